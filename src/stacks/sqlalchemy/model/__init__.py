# autoflake: skip_file
"""
We rely on all of our sqlalchemy models being listed here, so that we can
make sure they are all registered with the declarative base.
This is necessary to make sure that all of our models are properly reflected in
the database when we create a new database.
"""

import stacks.sqlalchemy.model.base
import stacks.sqlalchemy.model.catalog
import stacks.sqlalchemy.model.fine
import stacks.sqlalchemy.model.hold
import stacks.sqlalchemy.model.loan
import stacks.sqlalchemy.model.notification
import stacks.sqlalchemy.model.patron
import stacks.sqlalchemy.model.renewal
from stacks.sqlalchemy.model.base import Base
