"""Public read model for raffles.

Until a raffle is ``CLOSED`` only its commitment is exposed. Once closed the
secret, proof, winner and the verification recipe become visible.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .db.utils import dt_iso
from .draw.hashing import VERIFICATION_RECIPE, verify_draw, winner_index
from .models import Entry, Raffle


@dataclass(frozen=True)
class PublicRaffleView:
    """Serializable snapshot of what the public may see about a raffle."""

    id: int
    title: str
    status: str
    end_at: Optional[str]
    secret_commitment: str
    entry_count: int
    min_entries: Optional[int] = None
    secret: Optional[str] = None
    draw_proof: Optional[str] = None
    winner_id: Optional[int] = None
    draw_entry_count: Optional[int] = None
    draw_timestamp: Optional[int] = None
    winner_index: Optional[int] = None
    verification_recipe: Optional[str] = None

    @classmethod
    def from_raffle(cls, raffle: Raffle, entry_count: int) -> "PublicRaffleView":
        """Build the view, withholding draw secrets unless ``raffle`` is closed."""

        view = cls(
            id=raffle.id,
            title=raffle.title,
            status=raffle.status,
            end_at=dt_iso(raffle.end_at),
            secret_commitment=raffle.secret_commitment,
            entry_count=entry_count,
            min_entries=raffle.min_entries,
        )
        if not raffle.is_closed:
            return view

        index = None
        if raffle.draw_proof and raffle.draw_entry_count:
            index = winner_index(raffle.draw_proof, raffle.draw_entry_count)
        return cls(
            **{
                **asdict(view),
                "secret": raffle.revealed_secret,
                "draw_proof": raffle.draw_proof,
                "winner_id": raffle.winner_id,
                "draw_entry_count": raffle.draw_entry_count,
                "draw_timestamp": raffle.draw_timestamp,
                "winner_index": index,
                "verification_recipe": VERIFICATION_RECIPE,
            }
        )

    @property
    def verifiable(self) -> bool:
        return (
            self.secret is not None
            and self.draw_proof is not None
            and self.draw_entry_count is not None
            and self.draw_timestamp is not None
        )

    def verify(self) -> bool:
        """Recompute the published draw. Returns ``False`` when it cannot be verified."""
        if not self.verifiable:
            return False
        verification = verify_draw(
            secret=self.secret,
            commitment=self.secret_commitment,
            entry_count=self.draw_entry_count,
            timestamp=self.draw_timestamp,
            proof=self.draw_proof,
            index=self.winner_index,
        )
        return verification.valid

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        if self.status != "CLOSED":
            for key in (
                "secret",
                "draw_proof",
                "winner_id",
                "draw_entry_count",
                "draw_timestamp",
                "winner_index",
                "verification_recipe",
            ):
                data.pop(key)
        return data


def public_raffle_view(session: Session, raffle_id: int) -> Optional[PublicRaffleView]:
    """Load ``raffle_id`` and return its public view, or ``None`` if it does not exist."""

    raffle = session.get(Raffle, raffle_id)
    if raffle is None:
        return None
    entry_count = session.scalar(
        select(func.count(Entry.id)).where(Entry.raffle_id == raffle_id)
    )
    return PublicRaffleView.from_raffle(raffle, int(entry_count or 0))


__all__ = ["PublicRaffleView", "public_raffle_view"]
