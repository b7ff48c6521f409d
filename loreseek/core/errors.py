class LoreseekError(Exception):
    """Base class for errors raised at the collection store boundary."""


class UnknownCollectionError(LoreseekError, LookupError):
    def __init__(self, collection_id: str):
        super().__init__(f"unknown collection: {collection_id}")
        self.collection_id = collection_id
