from abc import ABC, abstractmethod
from typing import Dict, Mapping, Optional

from fastapi import Request


class IncomingRequest(ABC):
    """What the authorization core needs to know about an HTTP request."""

    method: str
    path: str

    @abstractmethod
    def header(self, name: str) -> Optional[str]:
        """Header value by case-insensitive name, or None."""

    @abstractmethod
    def param(self, name: str) -> Optional[str]:
        """Form or query parameter value, or None."""


class FormRequest(IncomingRequest):
    """
    Plain IncomingRequest built from already-parsed headers and parameters.

    Form fields take precedence over query parameters with the same name.
    """

    def __init__(
        self,
        method: str = "POST",
        path: str = "/",
        headers: Optional[Mapping[str, str]] = None,
        query: Optional[Mapping[str, str]] = None,
        form: Optional[Mapping[str, Optional[str]]] = None,
    ):
        self.method = method
        self.path = path
        self._headers: Dict[str, str] = {
            key.lower(): value for key, value in (headers or {}).items()
        }
        self._params: Dict[str, str] = dict(query or {})
        self._params.update({k: v for k, v in (form or {}).items() if v is not None})

    @classmethod
    def from_fastapi(
        cls,
        request: Request,
        form: Optional[Mapping[str, Optional[str]]] = None,
    ) -> "FormRequest":
        return cls(
            method=request.method,
            path=request.url.path,
            headers=request.headers,
            query=request.query_params,
            form=form,
        )

    def header(self, name: str) -> Optional[str]:
        return self._headers.get(name.lower())

    def param(self, name: str) -> Optional[str]:
        return self._params.get(name)
