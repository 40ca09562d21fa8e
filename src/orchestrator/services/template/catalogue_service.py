# orchestrator/services/template/catalogue_service.py

import logging
from typing import List

from orchestrator.core.context import AppContext
from orchestrator.dao.template.master_template_dao import MasterTemplateVersionDao
from orchestrator.models.template import MasterTemplateVersion, MasterTemplateFile
from orchestrator.schemas.template.template_schemas import MasterTemplateVersionCreate, MasterTemplateVersionRead
from orchestrator.services.exceptions import ValidationError
from orchestrator.services.versioning.migration_executor import checksum_of
from orchestrator.utils.timeutils import utcnow, to_naive_utc

logger = logging.getLogger(__name__)

class TemplateCatalogueService:
    """主模板目录的维护。版本一旦发布即不可修改。"""

    def __init__(self, context: AppContext):
        self.context = context
        self.db = context.db
        self.dao = MasterTemplateVersionDao(context.db)

    async def publish_version(self, data: MasterTemplateVersionCreate) -> MasterTemplateVersion:
        if await self.dao.get_by_version(data.version) is not None:
            raise ValidationError(f"Master template version '{data.version}' already exists.")
        paths = [f.path for f in data.files]
        if len(paths) != len(set(paths)):
            raise ValidationError("Master template files must have unique paths.")
        unknown = set(data.breaking_changes) - set(paths)
        if unknown:
            raise ValidationError(f"Breaking changes reference unknown files: {sorted(unknown)}")

        master = MasterTemplateVersion(
            version=data.version,
            release_notes=data.release_notes,
            breaking_changes=list(data.breaking_changes),
            released_at=to_naive_utc(data.released_at) or utcnow(),
            files=[
                MasterTemplateFile(path=f.path, content=f.content, checksum=checksum_of(f.content))
                for f in data.files
            ],
        )
        await self.dao.add(master)
        await self.db.commit()
        logger.info("Published master template version %s with %s files", master.version, len(paths))
        return master

    async def list_versions(self) -> List[MasterTemplateVersionRead]:
        versions = await self.dao.get_all_ordered()
        return [MasterTemplateVersionRead.model_validate(v) for v in versions]
