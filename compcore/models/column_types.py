from sqlalchemy import Numeric

# Pounds and pence; values round-trip as ``Decimal``.
MONEY = Numeric(12, 2, asdecimal=True)
