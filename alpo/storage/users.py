"""User lookups against the relational store.

The auth collaborator signs users in with an access code; this repository
resolves the code to a `User` together with the housing companies the user
belongs to. No authentication flow lives here.
"""

from typing import Iterable, List, Optional

from alpo.chat.models import User, utc_now
from alpo.storage.database import Database, to_db_timestamp
from alpo.utils.logger import LoggerManager


class UserRepository:
    """Read and seed `users` / `user_housing_companies`."""

    def __init__(self, db: Database):
        self.db = db
        self.logger = LoggerManager.get_logger(__name__)

    def find_by_access_code(self, access_code: str) -> Optional[User]:
        """Resolve an access code to a user.

        Args:
            access_code: Code entered on the sign-in screen

        Returns:
            User with housing company ids, or None if the code is unknown

        Raises:
            StoreUnavailableError: If the database cannot be queried
        """
        with self.db.transaction("find_user") as conn:
            row = conn.execute(
                "SELECT id, email, role, access_code FROM users WHERE access_code = ?",
                (access_code,),
            ).fetchone()
            if not row:
                self.logger.info("users.lookup.miss")
                return None
            company_ids = self._housing_company_ids(conn, row["id"])

        return User(
            id=row["id"],
            email=row["email"],
            role=row["role"],
            access_code=row["access_code"],
            housing_company_ids=frozenset(company_ids),
        )

    @staticmethod
    def _housing_company_ids(conn, user_id: str) -> List[str]:
        cursor = conn.execute(
            "SELECT housing_company_id FROM user_housing_companies WHERE user_id = ?",
            (user_id,),
        )
        return [r[0] for r in cursor.fetchall()]

    def add_user(
        self,
        user_id: str,
        access_code: str,
        role: str = "user",
        email: Optional[str] = None,
        housing_company_ids: Iterable[str] = (),
    ) -> User:
        """Insert a user and its housing company assignments.

        Housing companies must already exist (see NewsRepository.add_housing_company).
        """
        company_ids = list(housing_company_ids)
        with self.db.transaction("add_user") as conn:
            conn.execute(
                """
                INSERT INTO users (id, email, role, access_code, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (user_id, email, role, access_code, to_db_timestamp(utc_now())),
            )
            conn.executemany(
                """
                INSERT INTO user_housing_companies (user_id, housing_company_id)
                VALUES (?, ?)
                """,
                [(user_id, company_id) for company_id in company_ids],
            )

        self.logger.info(
            "users.added",
            extra={"extra_data": {"user_id": user_id, "housing_companies": len(company_ids)}},
        )
        return User(
            id=user_id,
            email=email,
            role=role,
            access_code=access_code,
            housing_company_ids=frozenset(company_ids),
        )

    def assign_housing_company(self, user_id: str, housing_company_id: str) -> None:
        with self.db.transaction("assign_housing_company") as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO user_housing_companies (user_id, housing_company_id)
                VALUES (?, ?)
                """,
                (user_id, housing_company_id),
            )
