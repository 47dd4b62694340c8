from sqlalchemy import Numeric
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# All money amounts are stored as exact decimals with two fractional digits.
MoneyType = Numeric(10, 2, asdecimal=True)
