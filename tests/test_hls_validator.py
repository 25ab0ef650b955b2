#############################################################################
#
#   Licensed under the Apache License, Version 2.0 (the "License");
#   you may not use this file except in compliance with the License.
#   You may obtain a copy of the License at
#
#       http://www.apache.org/licenses/LICENSE-2.0
#
#   Unless required by applicable law or agreed to in writing, software
#   distributed under the License is distributed on an "AS IS" BASIS,
#   WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#   See the License for the specific language governing permissions and
#   limitations under the License.
#
#############################################################################
#
#  Project Name        :    Streaming media inspector
#
#############################################################################

import unittest
from unittest import mock

from mediainspect.exceptions import PlaylistFetchError
from mediainspect.mpeg.hls.validator import validate_hls_manifest

from .mixins.mixin import TestCaseMixin

BASE_URL = 'https://cdn.example.com/master.m3u8'

MEDIA_PLAYLIST = '\n'.join([
    '#EXTM3U',
    '#EXT-X-VERSION:3',
    '#EXT-X-TARGETDURATION:10',
    '#EXTINF:10,',
    'segment1.ts',
    '#EXTINF:8,',
    'segment2.ts',
    '#EXT-X-ENDLIST',
])

CHILD_PLAYLIST = '\n'.join([
    '#EXTM3U',
    '#EXT-X-VERSION:4',
    '#EXT-X-TARGETDURATION:6',
    '#EXTINF:6,',
    'seg1.ts',
    '#EXTINF:6,',
    'seg2.ts',
    '#EXT-X-ENDLIST',
])


class HlsValidatorTests(TestCaseMixin, unittest.IsolatedAsyncioTestCase):
    async def test_healthy_media_playlist(self):
        result = await validate_hls_manifest(MEDIA_PLAYLIST)
        self.assertNoErrors(result)
        self.assertEqual(self.messages(result.warnings), [])
        self.assertIn('Media segments: 2', result.info[0].message)

    async def test_missing_extm3u(self):
        result = await validate_hls_manifest('#EXTINF:10,\nsegment.ts')
        self.assertHasMessage(result.errors, 'First line')
        self.assertEqual(result.errors[0].line, 1)

    async def test_empty_input(self):
        for text in ['', '  \n\t', None]:
            result = await validate_hls_manifest(text)
            self.assertEqual(self.messages(result.errors), ['Manifest is empty.'])
            self.assertEqual(result.warnings, ())
            self.assertEqual(result.info, ())

    async def test_master_children_are_validated(self):
        master = '\n'.join([
            '#EXTM3U',
            '#EXT-X-VERSION:4',
            '#EXT-X-STREAM-INF:BANDWIDTH=1000000',
            'video/index.m3u8',
            '#EXT-X-MEDIA:TYPE=AUDIO,GROUP-ID="aud",URI="audio/eng.m3u8"',
            '#EXT-X-ENDLIST',
        ])
        fetcher = mock.AsyncMock(return_value=CHILD_PLAYLIST)
        result = await validate_hls_manifest(master, base_url=BASE_URL, fetch_playlist=fetcher)
        self.assertEqual(fetcher.await_count, 2)
        fetcher.assert_has_awaits([
            mock.call('https://cdn.example.com/video/index.m3u8'),
            mock.call('https://cdn.example.com/audio/eng.m3u8'),
        ])
        self.assertEqual([m.uri for m in result.media_playlists], [
            'https://cdn.example.com/video/index.m3u8',
            'https://cdn.example.com/audio/eng.m3u8',
        ])
        self.assertNoMessage(result.errors, 'Child playlist')
        self.assertHasMessage(result.info, 'Detected 2 referenced child playlists.')
        child = result.media_playlists[0].result
        self.assertHasMessage(child.info, 'Media segments: 2')

    async def test_duplicate_children_fetched_once(self):
        master = '\n'.join([
            '#EXTM3U',
            '#EXT-X-VERSION:7',
            '#EXT-X-STREAM-INF:BANDWIDTH=1000000,FRAME-RATE=24',
            'video.m3u8',
            '#EXT-X-STREAM-INF:BANDWIDTH=2000000,FRAME-RATE=24',
            'video.m3u8',
        ])
        child = '\n'.join([
            '#EXTM3U', '#EXT-X-VERSION:3', '#EXT-X-TARGETDURATION:6',
            '#EXTINF:6,', 'seg1.ts', '#EXT-X-ENDLIST'])
        fetcher = mock.AsyncMock(return_value=child)
        result = await validate_hls_manifest(master, base_url=BASE_URL, fetch_playlist=fetcher)
        self.assertEqual(fetcher.await_count, 1)
        self.assertEqual(len(result.media_playlists), 1)
        self.assertNoErrors(result)

    async def test_synchronous_fetcher(self):
        master = '#EXTM3U\n#EXT-X-STREAM-INF:BANDWIDTH=1\nvideo.m3u8\n'
        fetcher = mock.Mock(return_value=CHILD_PLAYLIST)
        result = await validate_hls_manifest(master, base_url=BASE_URL, fetch_playlist=fetcher)
        fetcher.assert_called_once_with('https://cdn.example.com/video.m3u8')
        self.assertEqual(len(result.media_playlists), 1)

    async def test_empty_child_content(self):
        master = '\n'.join(['#EXTM3U', '#EXT-X-STREAM-INF:BANDWIDTH=100000', 'video.m3u8'])
        fetcher = mock.AsyncMock(return_value='   ')
        result = await validate_hls_manifest(master, base_url=BASE_URL, fetch_playlist=fetcher)
        self.assertHasMessage(
            result.errors,
            'Playlist https://cdn.example.com/video.m3u8 returned empty content.')
        self.assertEqual(result.media_playlists, ())

    async def test_fetch_failure_does_not_stop_siblings(self):
        master = '\n'.join([
            '#EXTM3U',
            '#EXT-X-STREAM-INF:BANDWIDTH=1',
            'missing.m3u8',
            '#EXT-X-STREAM-INF:BANDWIDTH=2',
            'video.m3u8',
        ])

        async def fetch(url: str) -> str:
            if url.endswith('missing.m3u8'):
                raise PlaylistFetchError(url, 404, 'Not Found')
            return CHILD_PLAYLIST

        result = await validate_hls_manifest(master, base_url=BASE_URL, fetch_playlist=fetch)
        self.assertHasMessage(
            result.errors, 'Failed to fetch child playlist https://cdn.example.com/missing.m3u8')
        self.assertHasMessage(result.errors, '404')
        self.assertEqual([m.uri for m in result.media_playlists],
                         ['https://cdn.example.com/video.m3u8'])

    async def test_any_fetcher_exception_is_scoped_to_its_child(self):
        class ClientError(Exception):
            pass

        master = '\n'.join([
            '#EXTM3U',
            '#EXT-X-STREAM-INF:BANDWIDTH=1',
            'a.m3u8',
            '#EXT-X-STREAM-INF:BANDWIDTH=2',
            'b.m3u8',
        ])
        calls: list[str] = []

        async def fetch(url: str) -> str:
            calls.append(url)
            if url.endswith('a.m3u8'):
                raise ClientError('connection reset')
            return CHILD_PLAYLIST

        result = await validate_hls_manifest(master, base_url=BASE_URL, fetch_playlist=fetch)
        self.assertEqual(calls, [
            'https://cdn.example.com/a.m3u8',
            'https://cdn.example.com/b.m3u8',
        ])
        self.assertEqual(self.messages(result.errors), [
            'Failed to fetch child playlist https://cdn.example.com/a.m3u8: connection reset',
        ])
        self.assertEqual([m.uri for m in result.media_playlists],
                         ['https://cdn.example.com/b.m3u8'])

    async def test_sync_fetcher_runtime_error(self):
        master = '#EXTM3U\n#EXT-X-STREAM-INF:BANDWIDTH=1\nvideo.m3u8\n'
        fetcher = mock.Mock(side_effect=RuntimeError('event loop closed'))
        result = await validate_hls_manifest(master, base_url=BASE_URL, fetch_playlist=fetcher)
        self.assertHasMessage(
            result.errors,
            'Failed to fetch child playlist https://cdn.example.com/video.m3u8: event loop closed')
        self.assertHasMessage(result.info, 'Detected 1 referenced child playlist.')

    async def test_child_errors_are_summarised(self):
        master = '#EXTM3U\n#EXT-X-VERSION:1\n#EXT-X-STREAM-INF:BANDWIDTH=1\nvideo.m3u8\n'
        child = '#EXTM3U\n#EXT-X-TARGETDURATION:0\n'
        fetcher = mock.AsyncMock(return_value=child)
        result = await validate_hls_manifest(master, base_url=BASE_URL, fetch_playlist=fetcher)
        child_result = result.media_playlists[0].result
        self.assertEqual(len(child_result.errors), 2)
        self.assertHasMessage(
            result.errors, 'Child playlist https://cdn.example.com/video.m3u8 has 2 errors.')
        self.assertHasMessage(
            result.warnings, 'Child playlist https://cdn.example.com/video.m3u8 has 2 warnings.')

    async def test_result_to_dict(self):
        master = '#EXTM3U\n#EXT-X-VERSION:3\n#EXT-X-STREAM-INF:BANDWIDTH=1\nvideo.m3u8\n'
        fetcher = mock.AsyncMock(return_value='#EXTM3U\n#EXT-X-VERSION:3\n')
        result = await validate_hls_manifest(master, base_url=BASE_URL, fetch_playlist=fetcher)
        self.assertTrue(result.has_errors())
        js = result.to_dict()
        self.assertEqual(js['errors'], [{
            'message': 'Child playlist https://cdn.example.com/video.m3u8 has 1 error.',
            'line': None,
        }])
        self.assertEqual(len(js['mediaPlaylists']), 1)
        child = js['mediaPlaylists'][0]
        self.assertEqual(child['uri'], 'https://cdn.example.com/video.m3u8')
        self.assertEqual(child['result']['errors'], [{
            'message': 'Media playlist is missing #EXTINF segments.',
            'line': None,
        }])
        self.assertEqual(self.messages(result.info), [
            'Detected 1 referenced child playlist.',
            '#EXT-X-VERSION:3 satisfies the minimum required version 1.',
        ])

    async def test_visited_playlists_are_skipped(self):
        master = '#EXTM3U\n#EXT-X-STREAM-INF:BANDWIDTH=1\nvideo.m3u8\n'
        visited = {'https://cdn.example.com/video.m3u8'}
        fetcher = mock.AsyncMock(return_value=CHILD_PLAYLIST)
        result = await validate_hls_manifest(
            master, base_url=BASE_URL, fetch_playlist=fetcher, visited=visited)
        fetcher.assert_not_awaited()
        self.assertHasMessage(
            result.info, 'Skipped already validated playlist https://cdn.example.com/video.m3u8.')

    async def test_separate_calls_do_not_share_visited(self):
        master = '#EXTM3U\n#EXT-X-STREAM-INF:BANDWIDTH=1\nvideo.m3u8\n'
        fetcher = mock.AsyncMock(return_value=CHILD_PLAYLIST)
        first = await validate_hls_manifest(master, base_url=BASE_URL, fetch_playlist=fetcher)
        second = await validate_hls_manifest(master, base_url=BASE_URL, fetch_playlist=fetcher)
        self.assertEqual(fetcher.await_count, 2)
        self.assertEqual(first, second)

    async def test_no_fetcher(self):
        master = '#EXTM3U\n#EXT-X-VERSION:3\n#EXT-X-STREAM-INF:BANDWIDTH=1\nvideo.m3u8\n'
        result = await validate_hls_manifest(master)
        self.assertHasMessage(result.info, 'Detected 1 referenced child playlist.')
        self.assertHasMessage(result.warnings, 'not validated')
        self.assertEqual(result.media_playlists, ())

    async def test_master_without_children(self):
        master = '#EXTM3U\n#EXT-X-VERSION:3\n#EXT-X-I-FRAME-STREAM-INF:BANDWIDTH=1\n'
        result = await validate_hls_manifest(master)
        self.assertHasMessage(result.errors, 'Master playlist does not reference any child playlists.')

    async def test_i_frame_and_media_uris_are_children(self):
        master = '\n'.join([
            '#EXTM3U',
            '#EXT-X-VERSION:4',
            '#EXT-X-I-FRAME-STREAM-INF:BANDWIDTH=1000,URI="iframe.m3u8"',
            '#EXT-X-MEDIA:TYPE=AUDIO,GROUP-ID="a",URI="audio.m3u8"',
        ])
        fetcher = mock.AsyncMock(return_value=CHILD_PLAYLIST)
        result = await validate_hls_manifest(master, base_url=BASE_URL, fetch_playlist=fetcher)
        self.assertEqual(fetcher.await_count, 2)
        self.assertHasMessage(result.info, 'Detected 2 referenced child playlists.')

    async def test_playlist_type_override(self):
        master = '#EXTM3U\n#EXT-X-VERSION:3\n#EXT-X-STREAM-INF:BANDWIDTH=1\nvideo.m3u8\n'
        result = await validate_hls_manifest(master, playlist_type='media')
        self.assertHasMessage(result.errors, 'Media playlist is missing #EXTINF segments.')
        self.assertHasMessage(result.info, 'Media segments: 0')

    async def test_missing_uri_after_stream_inf(self):
        master = '\n'.join([
            '#EXTM3U',
            '#EXT-X-VERSION:3',
            '#EXT-X-STREAM-INF:BANDWIDTH=1',
            '#EXT-X-STREAM-INF:BANDWIDTH=2',
            'video.m3u8',
        ])
        result = await validate_hls_manifest(master)
        self.assertEqual(self.messages(result.errors),
                         ['Expected playlist URI after directive on line 3.'])
        self.assertEqual(result.errors[0].line, 3)

    async def test_missing_uri_at_end(self):
        playlist = '#EXTM3U\n#EXT-X-VERSION:3\n#EXT-X-TARGETDURATION:4\n#EXTINF:4,\n'
        result = await validate_hls_manifest(playlist)
        self.assertHasMessage(result.errors, 'Expected segment URI after directive on line 4.')

    async def test_segment_tags_between_extinf_and_uri(self):
        playlist = '\n'.join([
            '#EXTM3U',
            '#EXT-X-VERSION:4',
            '#EXT-X-TARGETDURATION:4',
            '#EXTINF:4,',
            '#EXT-X-BYTERANGE:1000@0',
            '# a comment',
            'seg.ts',
            '#EXT-X-ENDLIST',
        ])
        result = await validate_hls_manifest(playlist)
        self.assertNoErrors(result)
        self.assertHasMessage(result.info, 'Media segments: 1')

    async def test_extinf_followed_by_extinf(self):
        playlist = '#EXTM3U\n#EXT-X-VERSION:3\n#EXTINF:4,\n#EXTINF:4,\nseg.ts\n#EXT-X-ENDLIST'
        result = await validate_hls_manifest(playlist)
        self.assertEqual(self.messages(result.errors),
                         ['Expected segment URI after directive on line 3.'])

    async def test_extinf_followed_by_stream_inf(self):
        playlist = '\n'.join([
            '#EXTM3U',
            '#EXT-X-VERSION:3',
            '#EXTINF:10,',
            '#EXT-X-STREAM-INF:BANDWIDTH=1',
            'child.m3u8',
        ])
        result = await validate_hls_manifest(playlist)
        self.assertEqual(self.messages(result.errors),
                         ['Expected segment URI after directive on line 3.'])
        self.assertEqual(result.errors[0].line, 3)
        self.assertHasMessage(result.info, 'Detected 1 referenced child playlist.')

        result = await validate_hls_manifest(playlist, playlist_type='media')
        self.assertEqual(self.messages(result.errors), [
            'Expected segment URI after directive on line 3.',
            'Media playlist is missing #EXTINF segments.',
        ])

    async def test_stream_inf_followed_by_extinf(self):
        playlist = '\n'.join([
            '#EXTM3U',
            '#EXT-X-VERSION:3',
            '#EXT-X-STREAM-INF:BANDWIDTH=1',
            '#EXTINF:10,',
            'seg.ts',
        ])
        result = await validate_hls_manifest(playlist, playlist_type='media')
        self.assertEqual(self.messages(result.errors),
                         ['Expected playlist URI after directive on line 3.'])
        self.assertHasMessage(result.info, 'Media segments: 1')

    async def test_tag_value_checks(self):
        playlist = '\n'.join([
            '#EXTM3U',
            '#EXT-X-VERSION:abc',
            '#EXT-X-TARGETDURATION:-1',
            '#EXTINF:4',
            'a.ts',
            '#EXTINF:x,',
            'b.ts',
            '#EXT-X-ENDLIST',
        ])
        result = await validate_hls_manifest(playlist)
        self.assertEqual(self.messages(result.errors), [
            '#EXT-X-VERSION must be a positive integer.',
            '#EXT-X-TARGETDURATION must be a positive integer.',
        ])
        self.assertEqual(self.messages(result.warnings), [
            '#EXTINF should include a comma separating duration and title.',
            '#EXTINF duration is not a valid number.',
        ])

    async def test_missing_version_and_endlist(self):
        playlist = '#EXTM3U\n#EXT-X-TARGETDURATION:4\n#EXTINF:4,\nseg.ts\n'
        result = await validate_hls_manifest(playlist)
        self.assertNoErrors(result)
        self.assertHasMessage(
            result.warnings, 'Media playlist does not include #EXT-X-ENDLIST (likely a live playlist).')
        self.assertHasMessage(result.warnings, 'Manifest is missing #EXT-X-VERSION tag.')

    async def test_crlf_line_endings(self):
        result = await validate_hls_manifest(MEDIA_PLAYLIST.replace('\n', '\r\n'))
        self.assertNoErrors(result)
        self.assertHasMessage(result.info, 'Media segments: 2')

    async def test_bandwidth_warnings(self):
        master = '\n'.join([
            '#EXTM3U',
            '#EXT-X-VERSION:7',
            '#EXT-X-STREAM-INF:AVERAGE-BANDWIDTH=100',
            'video.m3u8',
            '#EXT-X-I-FRAME-STREAM-INF:URI="iframe.m3u8"',
        ])
        result = await validate_hls_manifest(master)
        self.assertHasMessage(result.warnings, '#EXT-X-STREAM-INF is missing the BANDWIDTH attribute.')
        self.assertHasMessage(
            result.warnings, '#EXT-X-I-FRAME-STREAM-INF is missing the BANDWIDTH attribute.')


class HlsVersionTests(TestCaseMixin, unittest.IsolatedAsyncioTestCase):
    async def test_byterange_needs_version_4(self):
        manifest = '\n'.join([
            '#EXTM3U',
            '#EXT-X-VERSION:3',
            '#EXT-X-STREAM-INF:BANDWIDTH=100000',
            'video.m3u8',
            '#EXT-X-BYTERANGE:100@0',
        ])
        result = await validate_hls_manifest(manifest)
        self.assertHasMessage(result.info, 'Detected 1 referenced child playlist')
        self.assertHasMessage(result.warnings, 'not validated')
        self.assertHasMessage(result.errors, 'requires at least version 4')
        self.assertHasMessage(result.errors, 'EXT-X-BYTERANGE')

    async def test_fractional_duration_needs_version_3(self):
        playlist = '#EXTM3U\n#EXT-X-VERSION:2\n#EXTINF:9.5,\nseg.ts\n#EXT-X-ENDLIST'
        result = await validate_hls_manifest(playlist)
        self.assertEqual(self.messages(result.errors), [
            'Playlist requires at least version 3 (fractional EXTINF duration) ' +
            'but declares #EXT-X-VERSION:2.',
        ])
        self.assertEqual(result.errors[0].line, 2)

    async def test_sufficient_version_is_reported(self):
        playlist = '#EXTM3U\n#EXT-X-VERSION:6\n#EXTINF:9.5,\nseg.ts\n#EXT-X-ENDLIST'
        result = await validate_hls_manifest(playlist)
        self.assertNoErrors(result)
        self.assertEqual(self.messages(result.info), [
            'Media segments: 1',
            '#EXT-X-VERSION:6 satisfies the minimum required version 3.',
        ])

    async def test_undeclared_version(self):
        playlist = '#EXTM3U\n#EXT-X-MAP:URI="init.mp4"\n#EXTINF:4,\nseg.m4s\n#EXT-X-ENDLIST'
        result = await validate_hls_manifest(playlist)
        self.assertEqual(self.messages(result.errors), [
            'Playlist requires at least version 5 (EXT-X-MAP) but does not ' +
            'declare #EXT-X-VERSION.',
        ])

    async def test_error_names_only_features_above_declared_version(self):
        master = '\n'.join([
            '#EXTM3U',
            '#EXT-X-VERSION:4',
            '#EXT-X-INDEPENDENT-SEGMENTS',
            '#EXT-X-MEDIA:TYPE=SUBTITLES,GROUP-ID="s",URI="subs.m3u8"',
            '#EXT-X-STREAM-INF:BANDWIDTH=1,AUDIO="a",VIDEO-RANGE=PQ,SUBTITLES="s"',
            'video.m3u8',
        ])
        result = await validate_hls_manifest(master)
        self.assertEqual(self.messages(result.errors), [
            'Playlist requires at least version 8 (EXT-X-INDEPENDENT-SEGMENTS, ' +
            'TYPE=SUBTITLES, VIDEO-RANGE attribute, SUBTITLES attribute) ' +
            'but declares #EXT-X-VERSION:4.',
        ])

    async def test_version_bumps(self):
        cases = [
            ('#EXT-X-I-FRAME-STREAM-INF:BANDWIDTH=1,URI="i.m3u8"', 4),
            ('#EXT-X-MEDIA:TYPE=CLOSED-CAPTIONS,GROUP-ID="cc",INSTREAM-ID="CC1"', 6),
            ('#EXT-X-DATERANGE:ID="a",START-DATE="2020-01-01T00:00:00Z"', 7),
            ('#EXT-X-MEDIA:TYPE=AUDIO,GROUP-ID="a",CHANNELS="2",URI="a.m3u8"', 7),
            ('#EXT-X-STREAM-INF:BANDWIDTH=1,STABLE-VARIANT-ID="v"\nv.m3u8', 7),
            ('#EXT-X-MEDIA:TYPE=AUDIO,GROUP-ID="a",STABLE-RENDITION-ID="r",URI="a.m3u8"', 7),
            ('#EXT-X-CONTENT-STEERING:SERVER-URI="steer.json"', 9),
        ]
        for line, version in cases:
            manifest = f'#EXTM3U\n#EXT-X-VERSION:1\n{line}\n'
            result = await validate_hls_manifest(manifest)
            self.assertHasMessage(
                result.errors, f'requires at least version {version} ', msg=line)

    async def test_closed_captions_none(self):
        master = '\n'.join([
            '#EXTM3U',
            '#EXT-X-VERSION:3',
            '#EXT-X-STREAM-INF:BANDWIDTH=1,CLOSED-CAPTIONS=NONE',
            'video.m3u8',
        ])
        result = await validate_hls_manifest(master)
        self.assertNoErrors(result)


if __name__ == "__main__":
    unittest.main()
