import logging

from pwdlib.exceptions import UnknownHashError

from ..core.passwords import hash_password, verify_password
from ..core.tokens import TokenCodec
from ..errors import Conflict, InvalidCredentials, MalformedPayload, NotFound
from ..schemas import TokenOut, UserCredentials, UserOut
from .metadata import MetadataStore, UserRow

logger = logging.getLogger("recipebook.users")


def _user_out(user: UserRow) -> UserOut:
    return UserOut(id=user.id, name=user.name, created_at=user.created_at)


class UserService:
    """Account registration, login and self-service updates."""

    def __init__(self, metadata: MetadataStore, codec: TokenCodec, token_ttl_seconds: int = 3600):
        self.metadata = metadata
        self.codec = codec
        self.token_ttl_seconds = token_ttl_seconds

    def register(self, credentials: UserCredentials) -> UserOut:
        if self.metadata.find_active_user(credentials.username) is not None:
            raise Conflict("A user with that name already exists")
        user = self.metadata.insert_user(credentials.username, hash_password(credentials.password))
        logger.info(f"Registered user {user.id}")
        return _user_out(user)

    def login(self, credentials: UserCredentials) -> TokenOut:
        user = self.metadata.find_active_user(credentials.username)
        if user is None:
            raise InvalidCredentials()
        try:
            valid = verify_password(credentials.password, user.password_digest)
        except UnknownHashError as e:
            logger.error(f"Stored password digest of user {user.id} is unreadable")
            raise MalformedPayload(f"unreadable digest for user {user.id}") from e
        if not valid:
            raise InvalidCredentials()

        issued = self.codec.issue_token(user.id, self.token_ttl_seconds)
        return TokenOut(access_token=issued.token, expires_at=issued.expires_at)

    def me(self, subject: int) -> UserOut:
        user = self.metadata.get_active_user(subject)
        if user is None:
            raise NotFound("User not found")
        return _user_out(user)

    def update(self, subject: int, credentials: UserCredentials) -> UserOut:
        clash = self.metadata.find_active_user(credentials.username)
        if clash is not None and clash.id != subject:
            raise Conflict("A user with that name already exists")
        user = self.metadata.update_user(subject, credentials.username, hash_password(credentials.password))
        if user is None:
            raise NotFound("User not found")
        return _user_out(user)

    def delete(self, subject: int) -> None:
        if not self.metadata.soft_delete_user(subject):
            raise NotFound("User does not exist")
        logger.info(f"Deleted user {subject}")
