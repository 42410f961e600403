from sqlalchemy import Column, Integer, String, JSON, UniqueConstraint
from intake.core.db import Base

class SheetRow(Base):
    """
    One spreadsheet row. Row 1 of every sheet is its header.
    `position` is the 1-based row number and stays dense: deleting a row
    shifts every row below it up by one.
    """
    __tablename__ = "sheet_rows"
    __table_args__ = (UniqueConstraint("sheet", "position", name="uq_sheet_position"),)

    id = Column(Integer, primary_key=True, index=True)
    sheet = Column(String(100), nullable=False, index=True)
    position = Column(Integer, nullable=False)

    # cell values as a JSON array of strings
    cells = Column(JSON, nullable=False, default=list)
