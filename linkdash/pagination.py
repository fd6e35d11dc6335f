from dataclasses import dataclass
from enum import StrEnum

from linkdash.ids import clean_id


class PaginationStyle(StrEnum):
    OFFSET = "OFFSET"
    PAGE = "PAGE"


@dataclass(frozen=True)
class PageRequest:
    style: PaginationStyle
    size: int
    offset: int = 0
    page: int = 1

    def params(self) -> dict[str, int]:
        if self.style == PaginationStyle.OFFSET:
            return {"limit": self.size, "offset": self.offset}
        return {"page": self.page, "pageSize": self.size}


class PaginationController:
    """
    Page position for one leaf list.

    The upstream total is not trusted, so moving forward is always allowed;
    moving back stops at offset 0 (offset style) or page 1 (page style).
    Pointing the controller at a different owner (account or investment)
    returns it to the first page.
    """

    def __init__(
        self,
        style: PaginationStyle = PaginationStyle.OFFSET,
        size: int = 100,
        owner_id: str | None = None,
    ) -> None:
        if size <= 0:
            raise ValueError("Page size must be positive")
        self.style = PaginationStyle(style)
        self.size = size
        self._owner_id = clean_id(owner_id)
        self._offset = 0
        self._page = 1

    @classmethod
    def by_offset(cls, limit: int = 100, owner_id: str | None = None):
        return cls(PaginationStyle.OFFSET, limit, owner_id)

    @classmethod
    def by_page(cls, page_size: int = 20, owner_id: str | None = None):
        return cls(PaginationStyle.PAGE, page_size, owner_id)

    @property
    def owner_id(self) -> str | None:
        return self._owner_id

    @property
    def current(self) -> PageRequest:
        return PageRequest(self.style, self.size, self._offset, self._page)

    @property
    def has_previous(self) -> bool:
        if self.style == PaginationStyle.OFFSET:
            return self._offset > 0
        return self._page > 1

    @property
    def has_next(self) -> bool:
        return True

    def set_owner(self, owner_id: str | None) -> bool:
        """Switch owner; returns True when that reset the position."""
        owner_id = clean_id(owner_id)
        if owner_id == self._owner_id:
            return False
        self._owner_id = owner_id
        self.reset()
        return True

    def reset(self) -> PageRequest:
        self._offset = 0
        self._page = 1
        return self.current

    def load_more(self) -> PageRequest:
        if self.style == PaginationStyle.OFFSET:
            self._offset += self.size
        else:
            self._page += 1
        return self.current

    def load_previous(self) -> PageRequest:
        if self.style == PaginationStyle.OFFSET:
            self._offset = max(0, self._offset - self.size)
        else:
            self._page = max(1, self._page - 1)
        return self.current
