from typing import Optional

from ..errors import Conflict, NotFound, Unauthorized, UpstreamUnavailable


class IdentityError(UpstreamUnavailable):
    """The identity provider could not complete the call."""


class AccountExists(Conflict):
    pass


class AccountNotFound(NotFound):
    pass


class InvalidCredentials(Unauthorized):
    pass


class IdentityProvider:
    """
    Account lifecycle and token verification, owned by an external service.
    The portal trusts the uid returned by ``verify_token`` as the only
    authentication input; authorization comes from the portal's User record.
    """

    def create_account(
        self,
        email: str,
        display_name: Optional[str] = None,
        password: Optional[str] = None,
        password_hash: Optional[str] = None,
    ) -> str:
        raise NotImplementedError

    def get_uid_by_email(self, email: str) -> Optional[str]:
        raise NotImplementedError

    def set_disabled(self, uid: str, disabled: bool) -> None:
        raise NotImplementedError

    def delete_account(self, uid: str) -> None:
        raise NotImplementedError

    def verify_token(self, token: str) -> str:
        raise NotImplementedError

    def sign_in(self, email: str, password: str) -> str:
        raise NotImplementedError

    def change_password(self, uid: str, password: str) -> None:
        raise NotImplementedError

    def ping(self) -> bool:
        raise NotImplementedError
