from pydantic import BaseModel


class SuccessOut(BaseModel):
    success: bool = True


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    totalPages: int


def paginate(page: int, limit: int, total: int) -> Pagination:
    return Pagination(page=page, limit=limit, total=total, totalPages=(total + limit - 1) // limit if limit else 0)
