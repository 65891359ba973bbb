from datetime import datetime, timezone

EPOCH = datetime(1970, 1, 1)


def utcnow() -> datetime:
    # UTC naïf: c'est ce que stockent les colonnes DateTime
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value
