"""
Input validation utilities shared by the access-control apps.
"""
import re
import uuid
from typing import Optional


class InputValidator:
    """
    Common input validation utilities.
    
    Identifiers arrive from the identity provider, URLs, CLI flags and
    JSON payloads as strings; these helpers normalize them before they
    reach a query.
    """
    
    # Principal ids issued by the identity provider (opaque, URL-safe)
    PRINCIPAL_ID_PATTERN = re.compile(r'^[A-Za-z0-9._:@|-]{1,128}$')
    
    # Record ids accepted by the document store
    RECORD_ID_PATTERN = re.compile(r'^[A-Za-z0-9._-]{1,128}$')
    
    @staticmethod
    def parse_uuid(value) -> Optional[uuid.UUID]:
        """
        Parse a UUID from a string or UUID instance.
        
        Args:
            value: Candidate identifier
            
        Returns:
            UUID instance, or None if the value is empty or malformed
        """
        if value is None or value == '':
            return None
        if isinstance(value, uuid.UUID):
            return value
        try:
            return uuid.UUID(str(value))
        except (ValueError, AttributeError, TypeError):
            return None
    
    @staticmethod
    def validate_principal_id(principal_id) -> bool:
        """Validate a principal identifier."""
        if not isinstance(principal_id, str):
            return False
        return bool(InputValidator.PRINCIPAL_ID_PATTERN.match(principal_id))
    
    @staticmethod
    def validate_record_id(record_id) -> bool:
        """Validate a record identifier."""
        if not isinstance(record_id, str):
            return False
        return bool(InputValidator.RECORD_ID_PATTERN.match(record_id))
    
    @staticmethod
    def normalize_id(value) -> Optional[str]:
        """Render an identifier as a string, keeping None as None."""
        if value is None or value == '':
            return None
        return str(value)
