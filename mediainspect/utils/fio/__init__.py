from .bits_field_reader import BitsFieldReader
from .field_reader import FieldReader

__all__ = [
    'BitsFieldReader',
    'FieldReader',
]
