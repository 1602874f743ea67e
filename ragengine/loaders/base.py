"""Document loader interface."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional

from ragengine.exceptions import SourceFetchError
from ragengine.models import Document


class DocumentLoader(ABC):
    """Fetches the content behind an opaque source descriptor."""

    @abstractmethod
    async def load(self, source: str) -> Document:
        """
        Fetch one source.

        Args:
            source: Source descriptor (URL, path, key...)

        Returns:
            Document with the source's text

        Raises:
            SourceFetchError: The source could not be fetched
        """
        pass


class InMemoryLoader(DocumentLoader):
    """Serves documents from a mapping of source id to text."""

    def __init__(
        self,
        documents: Mapping[str, str],
        metadata: Optional[Mapping[str, Dict[str, Any]]] = None
    ):
        self.documents = dict(documents)
        self.metadata = dict(metadata or {})

    async def load(self, source: str) -> Document:
        if source not in self.documents:
            raise SourceFetchError(source, "unknown source")
        return Document(
            source=source,
            text=self.documents[source],
            metadata=dict(self.metadata.get(source, {})),
        )
