"""
JSON-file persistence for launched tokens, donations, charities, audit logs,
users and login sessions.

Everything lives in memory and is loaded from STORE_FILE at startup; every
mutation rewrites the whole file. A mutation whose write fails is rolled back in
memory, so memory and file stay in step. Records are stored with their Python
field names.
"""

import json
import secrets
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from mcp.server.fastmcp.utilities.logging import get_logger
from pydantic import ValidationError

from .fee_split import is_bps_anomaly
from .models import (
    ApprovalStatus,
    AuditLog,
    Charity,
    CharityStatus,
    DashboardStats,
    Donation,
    LaunchedToken,
    Session,
    TokenImpact,
    User,
    utcnow,
)

logger = get_logger(__name__)

DEFAULT_CHARITY_ID = "food-yoga-international"
DEFAULT_CHARITY = Charity(
    id=DEFAULT_CHARITY_ID,
    name="Food Yoga International",
    description="Supporting plant-based meals for the hungry worldwide",
    category="hunger",
    website="https://www.foodyoga.org",
    wallet_address="8UjmkVVLqBrrMsRkcBWQadQWCzWgWaHnxztwhJ1c8RTP",
    status=CharityStatus.approved,
    is_default=True,
    is_featured=True,
)

SESSION_TTL = timedelta(days=7)
RECENT_DONATIONS = 10

COLLECTIONS = ("tokens", "donations", "charities", "audit_logs", "users", "sessions")


class Storage:
    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._reset()

    def _reset(self) -> None:
        self.tokens: Dict[str, LaunchedToken] = {}  # {token_id: LaunchedToken}
        self.donations: List[Donation] = []
        self.charities: Dict[str, Charity] = {}
        self.audit_logs: List[AuditLog] = []
        self.users: Dict[str, User] = {}
        self.sessions: Dict[str, Session] = {}

    # --- Persistence ---

    def load(self) -> None:
        """Loads the store from the JSON file, starting fresh if it is missing or unreadable."""
        try:
            if self.path.exists():
                with open(self.path, "r") as f:
                    data = json.load(f)
                self.tokens = {t["id"]: LaunchedToken(**t) for t in data.get("tokens", [])}
                self.donations = [Donation(**d) for d in data.get("donations", [])]
                self.charities = {c["id"]: Charity(**c) for c in data.get("charities", [])}
                self.audit_logs = [AuditLog(**a) for a in data.get("audit_logs", [])]
                self.users = {u["id"]: User(**u) for u in data.get("users", [])}
                self.sessions = {s["id"]: Session(**s) for s in data.get("sessions", [])}
                logger.info(f"Loaded store from {self.path}: {len(self.tokens)} tokens, {len(self.donations)} donations")
            else:
                logger.info(f"Store file {self.path} not found, starting fresh.")
        except (json.JSONDecodeError, IOError, TypeError, KeyError, AttributeError, ValidationError) as e:
            logger.error(f"Error loading store from {self.path}: {e}. Starting fresh.")
            self._reset()

    def save(self) -> None:
        """Writes the whole store back to the JSON file through a temp file."""
        data = {
            "tokens": [t.model_dump(mode="json") for t in self.tokens.values()],
            "donations": [d.model_dump(mode="json") for d in self.donations],
            "charities": [c.model_dump(mode="json") for c in self.charities.values()],
            "audit_logs": [a.model_dump(mode="json") for a in self.audit_logs],
            "users": [u.model_dump(mode="json") for u in self.users.values()],
            "sessions": [s.model_dump(mode="json") for s in self.sessions.values()],
        }
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w") as f:
                json.dump(data, f, indent=4)
            tmp.replace(self.path)
        except OSError as e:
            logger.error(f"Error saving store to {self.path}: {e}")
            raise
        logger.debug(f"Saved store to {self.path}")

    @contextmanager
    def _mutation(self) -> Iterator[None]:
        """Persists the changes made in the block; restores the previous state if that fails."""
        snapshot = {name: getattr(self, name).copy() for name in COLLECTIONS}
        try:
            yield
            self.save()
        except Exception:
            for name, value in snapshot.items():
                setattr(self, name, value)
            raise

    # --- Charities ---

    def seed_default_charities(self) -> None:
        if DEFAULT_CHARITY_ID not in self.charities:
            with self._mutation():
                self.charities[DEFAULT_CHARITY_ID] = DEFAULT_CHARITY.model_copy()
            logger.info(f"Seeded default charity {DEFAULT_CHARITY.name}")

    def create_charity(self, charity: Charity) -> Charity:
        with self._mutation():
            self.charities[charity.id] = charity
        return charity

    def get_charities(self) -> List[Charity]:
        return sorted(self.charities.values(), key=lambda c: (not c.is_featured, c.name))

    def get_verified_charities(self) -> List[Charity]:
        return [c for c in self.get_charities() if c.status == CharityStatus.approved]

    def get_charity_by_id(self, charity_id: str) -> Optional[Charity]:
        return self.charities.get(charity_id)

    def get_charity_by_email(self, email: str) -> Optional[Charity]:
        email = email.strip().lower()
        for charity in self.charities.values():
            if charity.email and charity.email.lower() == email:
                return charity
        return None

    def get_default_charity(self) -> Optional[Charity]:
        for charity in self.charities.values():
            if charity.is_default:
                return charity
        return None

    # --- Tokens ---

    def create_launched_token(self, token: LaunchedToken) -> LaunchedToken:
        with self._mutation():
            self.tokens[token.id] = token
        return token

    def get_launched_tokens(self) -> List[LaunchedToken]:
        """All tokens, newest first."""
        return sorted(self.tokens.values(), key=lambda t: t.launched_at, reverse=True)

    def get_token_by_id(self, token_id: str) -> Optional[LaunchedToken]:
        return self.tokens.get(token_id)

    def get_launched_token_by_mint(self, mint_address: str) -> Optional[LaunchedToken]:
        for token in self.tokens.values():
            if token.mint_address == mint_address:
                return token
        return None

    def get_tokens_by_creator(self, creator_wallet: str) -> List[LaunchedToken]:
        return [t for t in self.get_launched_tokens() if t.creator_wallet == creator_wallet]

    def get_tokens_by_charity_email(self, charity_email: str) -> List[LaunchedToken]:
        email = charity_email.strip().lower()
        return [t for t in self.get_launched_tokens() if t.charity_email and t.charity_email.lower() == email]

    def get_tokens_pending_approval(self) -> List[LaunchedToken]:
        return [t for t in self.get_launched_tokens() if t.charity_approval_status == ApprovalStatus.pending]

    def get_bps_anomalies(self) -> List[LaunchedToken]:
        return [
            t for t in self.get_launched_tokens()
            if is_bps_anomaly(t.charity_bps, t.platform_bps, t.creator_bps)
        ]

    def search_tokens_by_name(self, query: str, limit: int = 20) -> List[LaunchedToken]:
        q = query.lower()
        matches = [t for t in self.get_launched_tokens() if q in t.name.lower() or q in t.symbol.lower()]
        return matches[:limit]

    def _update_token(self, token_id: str, changes: Dict[str, Any]) -> Optional[LaunchedToken]:
        token = self.tokens.get(token_id)
        if token is None:
            return None
        updated = token.model_copy(update=changes)
        with self._mutation():
            self.tokens[token_id] = updated
        return updated

    def update_token_stats(self, mint_address: str, volume: Decimal, donated: Decimal) -> Optional[LaunchedToken]:
        token = self.get_launched_token_by_mint(mint_address)
        if token is None:
            return None
        changes: Dict[str, Any] = {"trading_volume": volume, "charity_donated": donated}
        if donated > token.charity_donated:
            changes["donation_count"] = token.donation_count + 1
            changes["last_donation_at"] = utcnow()
        return self._update_token(token.id, changes)

    def update_token_approval_status(
        self, token_id: str, status: ApprovalStatus, note: Optional[str] = None
    ) -> Optional[LaunchedToken]:
        return self._update_token(
            token_id,
            {
                "charity_approval_status": ApprovalStatus(status),
                "charity_approval_note": note or None,
                "charity_responded_at": utcnow(),
            },
        )

    def acknowledge_anomaly(self, token_id: str, notes: Optional[str] = None) -> Optional[LaunchedToken]:
        return self._update_token(token_id, {"anomaly_acknowledged_at": utcnow(), "anomaly_notes": notes or None})

    # --- Donations ---

    def create_donation(self, donation: Donation) -> Donation:
        with self._mutation():
            self.donations.append(donation)
            token = self.get_launched_token_by_mint(donation.token_mint)
            if token is not None:
                self.tokens[token.id] = token.model_copy(
                    update={"donation_count": token.donation_count + 1, "last_donation_at": donation.donated_at}
                )
        return donation

    def get_donations(self) -> List[Donation]:
        return sorted(self.donations, key=lambda d: d.donated_at, reverse=True)

    def get_donations_by_token(self, token_mint: str) -> List[Donation]:
        return [d for d in self.get_donations() if d.token_mint == token_mint]

    def get_dashboard_stats(self) -> DashboardStats:
        tokens = list(self.tokens.values())
        return DashboardStats(
            total_tokens=len(tokens),
            total_donated=sum((t.charity_donated for t in tokens), Decimal("0")),
            total_volume=sum((t.trading_volume for t in tokens), Decimal("0")),
            total_platform_fees=sum((t.platform_fee_collected for t in tokens), Decimal("0")),
        )

    def get_token_impact(self, mint_address: str) -> Optional[TokenImpact]:
        if self.get_launched_token_by_mint(mint_address) is None:
            return None
        donations = self.get_donations_by_token(mint_address)
        total = sum((d.amount for d in donations), Decimal("0"))
        return TokenImpact(
            total_donated=total.quantize(Decimal("0.000000001")),
            donation_count=len(donations),
            recent_donations=donations[:RECENT_DONATIONS],
        )

    # --- Audit ---

    def create_audit_log(
        self,
        action: str,
        entity_type: str,
        entity_id: Optional[str] = None,
        actor_wallet: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        log = AuditLog(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_wallet=actor_wallet,
            details=json.dumps(details, default=str) if details is not None else None,
        )
        with self._mutation():
            self.audit_logs.append(log)
        return log

    def get_audit_logs(self, limit: int = 100) -> List[AuditLog]:
        return sorted(self.audit_logs, key=lambda a: a.created_at, reverse=True)[:limit]

    # --- Users and sessions ---

    def upsert_user(
        self,
        twitter_id: str,
        twitter_username: str,
        twitter_display_name: Optional[str] = None,
        profile_image_url: Optional[str] = None,
    ) -> User:
        for user in self.users.values():
            if user.twitter_id == twitter_id:
                return self.update_user(
                    user.id,
                    twitter_username=twitter_username,
                    twitter_display_name=twitter_display_name,
                    profile_image_url=profile_image_url,
                )
        user = User(
            twitter_id=twitter_id,
            twitter_username=twitter_username,
            twitter_display_name=twitter_display_name,
            profile_image_url=profile_image_url,
        )
        with self._mutation():
            self.users[user.id] = user
        return user

    def update_user(self, user_id: str, **changes: Any) -> Optional[User]:
        user = self.users.get(user_id)
        if user is None:
            return None
        updated = user.model_copy(update=dict(changes, updated_at=utcnow()))
        with self._mutation():
            self.users[user_id] = updated
        return updated

    def create_session(self, user_id: str, now: Optional[datetime] = None) -> Session:
        now = now or utcnow()
        session = Session(id=secrets.token_urlsafe(32), user_id=user_id, expires_at=now + SESSION_TTL)
        with self._mutation():
            self.sessions[session.id] = session
        return session

    def get_session_user(self, session_id: Optional[str], now: Optional[datetime] = None) -> Optional[User]:
        if not session_id:
            return None
        session = self.sessions.get(session_id)
        if session is None:
            return None
        if session.expires_at <= (now or utcnow()):
            self.delete_session(session_id)
            return None
        return self.users.get(session.user_id)

    def delete_session(self, session_id: str) -> None:
        if session_id in self.sessions:
            with self._mutation():
                del self.sessions[session_id]


def new_signature(prefix: str) -> str:
    """Placeholder signature for records created without an on-chain signature."""
    return f"{prefix}{uuid.uuid4().hex}"
