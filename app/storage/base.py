from abc import ABC, abstractmethod


class Storage(ABC):
    @abstractmethod
    def put_object(self, collection: str, user_id: str, filename: str, content: bytes, content_type: str) -> str:
        """Store {collection}/{user_id}/{filename}; returns its public URL."""
        raise NotImplementedError

    @abstractmethod
    def public_url(self, key: str) -> str:
        raise NotImplementedError


def object_key(collection: str, user_id: str, filename: str) -> str:
    return f"{collection}/{user_id}/{filename}"
