from fee_settlement.repositories.base.base_repository import BaseRepository

__all__ = ["BaseRepository"]
