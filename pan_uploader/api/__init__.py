"""
API Module - 123pan Open Platform Access

HTTP wrapper, upload operations and the account/directory client.
"""

from .http import ApiClient
from .upload import UploadApi
from .client import PanClient, get_access_token

__all__ = ['ApiClient', 'UploadApi', 'PanClient', 'get_access_token']
