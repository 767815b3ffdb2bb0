# src/seo_llm_core/utils/__init__.py

from .credential_formatter import format_credential_for_display

__all__ = ['format_credential_for_display']
