"""
Exceções das integrações com marketplaces
"""
from typing import Any, Optional


class MarketplaceAPIError(Exception):
    """Resposta de erro (não-2xx ou campo error) de uma API de marketplace"""
    
    def __init__(self, message: str, status_code: Optional[int] = None,
                 error_code: Optional[str] = None, payload: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.payload = payload
    
    def to_dict(self):
        return {
            "error": self.message,
            "status_code": self.status_code,
            "error_code": self.error_code,
            "details": self.payload,
        }


class TokenRefreshError(Exception):
    """Não foi possível renovar o token OAuth da integração"""
