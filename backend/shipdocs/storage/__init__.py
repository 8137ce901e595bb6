from shipdocs.storage.blob_store import BlobFile, BlobStore

__all__ = ["BlobFile", "BlobStore"]
