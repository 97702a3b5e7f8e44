"""
Repositories: typed ``get`` / ``list`` / ``mutate`` over one collection.

``mutate`` is read-modify-write guarded by the document ``version``: the
replace only lands if nobody else wrote in between, otherwise
VersionConflictError is raised and nothing is changed.
"""

import logging
from typing import Callable, Dict, Generic, List, Optional, Tuple, Type, TypeVar

import database
from errors import VersionConflictError
from schemas import Category, Order, Product, ShopModel, utcnow

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=ShopModel)


class Repository(Generic[M]):
    def __init__(self, collection_name: str, model: Type[M], kind: str):
        self.collection_name = collection_name
        self.model = model
        self.kind = kind

    def get(self, id_str: str) -> M:
        return self.model.model_validate(database.get_document(self.collection_name, id_str, self.kind))

    def find_one(self, filter_dict: Dict) -> Optional[M]:
        doc = database.find_document(self.collection_name, filter_dict)
        return self.model.model_validate(doc) if doc else None

    def list(self, filter_dict: Optional[Dict] = None, sort: Optional[List[Tuple[str, int]]] = None,
             limit: Optional[int] = None) -> List[M]:
        docs = database.get_documents(self.collection_name, filter_dict, limit=limit, sort=sort)
        return [self.model.model_validate(d) for d in docs]

    def create(self, item: M) -> M:
        new_id = database.create_document(self.collection_name, item)
        return item.model_copy(update={"id": new_id})

    def mutate(self, id_str: str, change: Callable[[M], M]) -> M:
        current = self.get(id_str)
        updated = change(current)
        updated = updated.model_copy(update={"version": current.version + 1, "updated_at": utcnow()})
        if not database.replace_document(self.collection_name, id_str, updated.to_document(), current.version):
            # re-read so a concurrent delete surfaces as NotFoundError
            self.get(id_str)
            logger.warning("%s %s changed since version %s", self.kind, id_str, current.version)
            raise VersionConflictError(f"{self.kind} {id_str} was modified by someone else, reload and retry")
        return updated

    def delete(self, id_str: str) -> None:
        database.delete_document(self.collection_name, id_str, self.kind)


def products() -> Repository[Product]:
    return Repository("products", Product, "Product")


def orders() -> Repository[Order]:
    return Repository("orders", Order, "Order")


def categories() -> Repository[Category]:
    return Repository("categories", Category, "Category")
