"""
Custom DRF authentication classes.
"""
from rest_framework.authentication import BaseAuthentication
from rest_framework.exceptions import AuthenticationFailed

from apps.core.validators import InputValidator


class Principal:
    """
    An authenticated caller.

    Identity is owned by the upstream identity provider; all we keep is the
    opaque principal id. Everything a principal may do comes from its role
    assignment.
    """

    is_authenticated = True
    is_anonymous = False

    def __init__(self, principal_id):
        self.principal_id = principal_id

    @property
    def pk(self):
        return self.principal_id

    def __str__(self):
        return self.principal_id

    def __eq__(self, other):
        return isinstance(other, Principal) and other.principal_id == self.principal_id

    def __hash__(self):
        return hash(self.principal_id)


class PrincipalHeaderAuthentication(BaseAuthentication):
    """
    DRF authentication class that trusts the principal header.
    
    The identity provider (or the gateway in front of this service)
    authenticates the caller and forwards its id in X-Principal-Id. This
    class turns that header into a Principal for DRF views.
    """
    
    header = 'HTTP_X_PRINCIPAL_ID'
    
    def authenticate(self, request):
        """
        Return the principal named by the header if present.
        
        Returns:
            tuple: (principal, None) if the header is set, None otherwise
        
        Raises:
            AuthenticationFailed: If the header value is malformed
        """
        principal_id = request.META.get(self.header)
        if not principal_id:
            return None
        
        if not InputValidator.validate_principal_id(principal_id):
            raise AuthenticationFailed('Invalid principal id.')
        
        return (Principal(principal_id), None)
    
    def authenticate_header(self, request):
        return 'Principal'
