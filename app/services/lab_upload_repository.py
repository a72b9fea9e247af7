"""Persistence boundary for lab upload records."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from beanie import PydanticObjectId
from beanie.operators import Set
from bson.errors import InvalidId

from app.models.lab_upload import LabUpload
from app.models.user_profile import UserProfile
from app.schemas.lab_upload import LabUploadRecord, LabUploadStatus
from app.shared.exceptions import NotFoundException


class LabUploadRepository(ABC):
    """Get / create / update-by-id / delete on upload records, plus profile gender."""

    @abstractmethod
    async def get(self, upload_id: str) -> Optional[LabUploadRecord]:
        ...

    @abstractmethod
    async def create(self, record: LabUploadRecord) -> LabUploadRecord:
        """Persist a new record. The returned record carries the assigned id."""

    @abstractmethod
    async def update(self, upload_id: str, fields: Dict[str, Any]) -> LabUploadRecord:
        """Set the given fields (last write wins) and return the updated record."""

    @abstractmethod
    async def claim(
        self,
        upload_id: str,
        expected_status: LabUploadStatus,
        fields: Dict[str, Any],
    ) -> Optional[LabUploadRecord]:
        """
        Set the fields only if the record is still in `expected_status`, as one
        atomic step. Returns None when the record is missing or has moved on.
        """

    @abstractmethod
    async def delete(self, upload_id: str) -> bool:
        ...

    @abstractmethod
    async def list_for_user(self, user_id: str) -> List[LabUploadRecord]:
        """Newest first."""

    @abstractmethod
    async def get_user_gender(self, user_id: str) -> Optional[str]:
        ...


def _to_record(doc: LabUpload) -> LabUploadRecord:
    data = doc.model_dump(exclude={"id", "revision_id"})
    return LabUploadRecord(id=str(doc.id), **data)


class BeanieLabUploadRepository(LabUploadRepository):
    """MongoDB-backed repository using the LabUpload document."""

    @staticmethod
    async def _get_doc(upload_id: str) -> Optional[LabUpload]:
        try:
            object_id = PydanticObjectId(upload_id)
        except (InvalidId, TypeError):
            return None
        return await LabUpload.get(object_id)

    async def get(self, upload_id: str) -> Optional[LabUploadRecord]:
        doc = await self._get_doc(upload_id)
        return _to_record(doc) if doc else None

    async def create(self, record: LabUploadRecord) -> LabUploadRecord:
        doc = LabUpload(**record.model_dump(exclude={"id"}))
        await doc.insert()
        return _to_record(doc)

    async def update(self, upload_id: str, fields: Dict[str, Any]) -> LabUploadRecord:
        doc = await self._get_doc(upload_id)
        if doc is None:
            raise NotFoundException(f"Lab upload {upload_id} not found")
        await doc.set(fields)
        return _to_record(doc)

    async def claim(
        self,
        upload_id: str,
        expected_status: LabUploadStatus,
        fields: Dict[str, Any],
    ) -> Optional[LabUploadRecord]:
        try:
            object_id = PydanticObjectId(upload_id)
        except (InvalidId, TypeError):
            return None

        result = await LabUpload.find_one(
            LabUpload.id == object_id,
            LabUpload.status == expected_status,
        ).update(Set(fields))
        if not result or not result.modified_count:
            return None
        return await self.get(upload_id)

    async def delete(self, upload_id: str) -> bool:
        doc = await self._get_doc(upload_id)
        if doc is None:
            return False
        await doc.delete()
        return True

    async def list_for_user(self, user_id: str) -> List[LabUploadRecord]:
        docs = await LabUpload.find(LabUpload.user_id == user_id).sort(-LabUpload.created_at).to_list()
        return [_to_record(doc) for doc in docs]

    async def get_user_gender(self, user_id: str) -> Optional[str]:
        profile = await UserProfile.find_one(UserProfile.user_id == user_id)
        return profile.gender if profile else None
