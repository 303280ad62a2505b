"""
Workflow catalog: an immutable snapshot of loaded definitions
"""
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Optional, Union

from ..exceptions import UnknownWorkflowError
from ..models.workflow import TriggerParams, WorkflowDefinition
from .parser import WorkflowParser


logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"
WORKFLOW_SUFFIXES = (".yaml", ".yml", ".json")


class WorkflowCatalog:
    """
    Read-only mapping of workflow id to definition.

    Changes produce a new catalog; a catalog never changes once built.
    """

    def __init__(self, workflows: Iterable[WorkflowDefinition] = ()):
        by_id: Dict[str, WorkflowDefinition] = {}
        for workflow in workflows:
            if workflow.id in by_id:
                raise ValueError(f"Duplicate workflow id in catalog: {workflow.id}")
            by_id[workflow.id] = workflow
        self._workflows = MappingProxyType(by_id)

    def __getitem__(self, workflow_id: str) -> WorkflowDefinition:
        return self._workflows[workflow_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._workflows)

    def __len__(self) -> int:
        return len(self._workflows)

    def __contains__(self, workflow_id: object) -> bool:
        return workflow_id in self._workflows

    def get(self, workflow_id: str, active_only: bool = True) -> WorkflowDefinition:
        """Look up a workflow; UnknownWorkflowError if absent (or inactive when active_only)"""
        workflow = self._workflows.get(workflow_id)
        if workflow is None or (active_only and not workflow.active):
            raise UnknownWorkflowError(workflow_id)
        return workflow

    def find_by_path(self, path: str, http_method: str = "POST") -> WorkflowDefinition:
        """The active workflow whose trigger listens on `path`"""
        path = path.strip("/")
        for workflow in self._workflows.values():
            trigger: TriggerParams = workflow.trigger.params
            if workflow.active and trigger.path == path and trigger.http_method == http_method.upper():
                return workflow
        raise UnknownWorkflowError(path, f"No active workflow listens on {http_method.upper()} /{path}")

    def workflows(self, active_only: bool = False) -> List[WorkflowDefinition]:
        return [w for w in self._workflows.values() if w.active or not active_only]

    def with_workflow(self, workflow: WorkflowDefinition) -> "WorkflowCatalog":
        """New catalog with `workflow` added or replaced"""
        workflows = dict(self._workflows)
        workflows[workflow.id] = workflow
        return WorkflowCatalog(workflows.values())

    def without(self, workflow_id: str) -> "WorkflowCatalog":
        """New catalog with `workflow_id` removed; UnknownWorkflowError if absent"""
        self.get(workflow_id, active_only=False)
        return WorkflowCatalog(w for w in self._workflows.values() if w.id != workflow_id)

    def activate(self, workflow_id: str) -> "WorkflowCatalog":
        return self.with_workflow(self.get(workflow_id, active_only=False).with_active(True))

    def deactivate(self, workflow_id: str) -> "WorkflowCatalog":
        return self.with_workflow(self.get(workflow_id, active_only=False).with_active(False))

    @classmethod
    def from_directory(cls, directory: Union[str, Path], parser: Optional[WorkflowParser] = None) -> "WorkflowCatalog":
        """Load every workflow file in a directory; any invalid file rejects the whole load"""
        parser = parser or WorkflowParser()
        directory = Path(directory)
        if not directory.is_dir():
            raise FileNotFoundError(f"Workflow directory not found: {directory}")

        workflows = []
        for file_path in sorted(directory.iterdir()):
            if file_path.suffix.lower() in WORKFLOW_SUFFIXES:
                workflows.append(parser.parse_file(file_path))

        logger.info(f"Loaded {len(workflows)} workflow(s) from {directory}")
        return cls(workflows)

    @classmethod
    def default(cls) -> "WorkflowCatalog":
        """The bundled messaging workflows"""
        return cls.from_directory(TEMPLATES_DIR)
