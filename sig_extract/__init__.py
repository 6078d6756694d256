"""
SigExtract - handwritten signature extraction from document photos
"""

from .backend import ImageBackend
from .services import SignatureService, UserFacingError
from .state import OutputSpec, ProcessedSignature, Region

__all__ = ['ImageBackend', 'SignatureService', 'UserFacingError', 'OutputSpec', 'ProcessedSignature', 'Region']
__version__ = '0.9.0'
