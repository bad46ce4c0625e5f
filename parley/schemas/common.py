from typing import Annotated, Generic, TypeVar

from pydantic import AfterValidator, BaseModel

from parley.models.base import is_object_id

T = TypeVar("T")


def _check_object_id(value: str) -> str:
    if not is_object_id(value):
        raise ValueError("must be a 24-character hex id")
    return value.lower()


ObjectIdStr = Annotated[str, AfterValidator(_check_object_id)]


class Page(BaseModel, Generic[T]):
    total_items: int
    last_page: int
    current_page: int
    data: list[T]
