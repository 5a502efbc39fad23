from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.user import User
from app.services.auth.principal import Principal
from app.services.chain.abi import normalize_address


class WalletConflictError(Exception):
    """The principal's wallet is already bound to another user profile."""

    def __init__(self, user_id: str, wallet_address: str, owner_id: str | None = None):
        super().__init__(f"wallet {wallet_address} is registered to another user")
        self.user_id = user_id
        self.wallet_address = wallet_address
        self.owner_id = owner_id


class UserService:
    def __init__(self, db: Session):
        self.db = db

    def get_or_create_user(self, principal: Principal) -> User:
        """Persisted profile for the principal; created on first use with the token's claims.

        Raises WalletConflictError when the wallet belongs to a different user id.
        """
        user = self.get_by_id(principal.id)
        if user:
            return user
        wallet = normalize_address(principal.wallet_address)
        owner = self.get_by_wallet(wallet)
        if owner:
            raise WalletConflictError(principal.id, wallet, owner.id)
        user = User(
            id=principal.id,
            wallet_address=wallet,
            role=principal.role.value,
            whitelist_status=principal.whitelist_status.value,
            last_login=datetime.now(timezone.utc),
        )
        try:
            self.db.add(user)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            # concurrent first request for the same principal, or the wallet was taken meanwhile
            user = self.get_by_id(principal.id)
            if user:
                return user
            owner = self.get_by_wallet(wallet)
            raise WalletConflictError(principal.id, wallet, owner.id if owner else None)
        self.db.refresh(user)
        return user

    def get_by_id(self, user_id: str) -> User | None:
        return self.db.query(User).filter(User.id == user_id).one_or_none()

    def get_by_wallet(self, wallet_address: str) -> User | None:
        return (
            self.db.query(User)
            .filter(User.wallet_address == normalize_address(wallet_address))
            .one_or_none()
        )
