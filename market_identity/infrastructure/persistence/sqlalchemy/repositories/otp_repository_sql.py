from datetime import datetime
from typing import Optional

from sqlalchemy import update
from sqlmodel import Session, select

from .....db.models import OTPCode
from .....application.ports.otp_repo import CodePurpose, OneTimeCodeDto, OneTimeCodeRepository

_codes = OTPCode.__table__


class SqlOneTimeCodeRepository(OneTimeCodeRepository):
    def __init__(self, session: Session):
        self.session = session

    def _to_dto(self, rec: OTPCode) -> OneTimeCodeDto:
        return OneTimeCodeDto(
            id=rec.id,
            phone=rec.phone,
            purpose=CodePurpose(rec.purpose),
            code=rec.code,
            created_at=rec.created_at,
            expires_at=rec.expires_at,
            verified=rec.verified,
            attempts=rec.attempts,
            owner_id=rec.owner_id,
            platform=rec.platform,
        )

    def create_for_phone(self, phone: str, purpose: CodePurpose, code: str, expires_at: datetime,
                         owner_id: Optional[str] = None, platform: Optional[str] = None) -> OneTimeCodeDto:
        stale = self.session.exec(
            select(OTPCode).where(
                OTPCode.phone == phone,
                OTPCode.purpose == purpose.value,
                OTPCode.verified == False,
            )
        ).all()
        for rec in stale:
            self.session.delete(rec)

        rec = OTPCode(
            phone=phone,
            code=code,
            purpose=purpose.value,
            expires_at=expires_at,
            owner_id=owner_id,
            platform=platform,
        )
        self.session.add(rec)
        self.session.commit()
        self.session.refresh(rec)
        return self._to_dto(rec)

    def find_latest_unconsumed(self, phone: str, purpose: CodePurpose) -> Optional[OneTimeCodeDto]:
        rec = self.session.exec(
            select(OTPCode)
            .where(
                OTPCode.phone == phone,
                OTPCode.purpose == purpose.value,
                OTPCode.verified == False,
            )
            .order_by(OTPCode.created_at.desc())
        ).first()
        return self._to_dto(rec) if rec else None

    def register_failed_attempt(self, code_id: str) -> Optional[int]:
        stmt = (
            update(_codes)
            .where(_codes.c.id == code_id, _codes.c.verified == False)
            .values(attempts=_codes.c.attempts + 1)
            .returning(_codes.c.attempts)
        )
        try:
            attempts = self.session.connection().execute(stmt).scalar()
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        return attempts

    def consume(self, code_id: str, max_attempts: int) -> bool:
        stmt = (
            update(_codes)
            .where(
                _codes.c.id == code_id,
                _codes.c.verified == False,
                _codes.c.attempts < max_attempts,
            )
            .values(verified=True)
        )
        try:
            consumed = self.session.connection().execute(stmt).rowcount == 1
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        return consumed
