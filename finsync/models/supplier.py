"""Supplier models."""

from typing import Optional

from pydantic import BaseModel


class Supplier(BaseModel):
    """A known sender of financial documents (e.g. a telecom or a bank)."""

    id: str
    name: str
    email_domain: Optional[str] = None
    category: str = "Other"
    is_active: bool = True

    @property
    def search_domain(self) -> Optional[str]:
        """Domain usable in a Gmail ``from:`` filter."""
        if not self.email_domain:
            return None
        domain = self.email_domain.strip()
        return domain[1:] if domain.startswith("@") else domain
