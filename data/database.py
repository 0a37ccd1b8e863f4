"""
Database Module for News Card Autopilot

This module handles all database connections and operations. One
DatabaseConnection implements every storage protocol in data.protocols
against SQL Server through pyodbc. pyodbc connections are not shared
between threads: each worker opens its own DatabaseConnection.
"""

import json
from datetime import datetime, timedelta
from typing import Optional, List, Dict, Any

import pandas as pd
import pyodbc

from config import settings
from data.models import (
    AutopilotRun, AutopilotSettings, CardStatus, Mapping, NewsCard, Notification,
    Post, PostStatus, PostedLink, RunStatus, SensitiveAction, SocialAccount,
)
from data.template import Template, parse_template
from utils.exceptions import QueryError, RenderError
from utils.logger import get_logger

logger = get_logger(__name__)


def _json_loads(value: Optional[str], default: Any) -> Any:
    if not value:
        return default
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring malformed JSON column value: {str(value)[:80]}")
        return default


class DatabaseConnection:
    """Database connection manager and storage implementation."""

    def __init__(self, connection_string: Optional[str] = None):
        """Initialize the database connection.

        Args:
            connection_string: ODBC connection string, defaults to settings.DB_CONNECTION_STRING.
        """
        self.conn = None
        self.connection_string = connection_string or settings.DB_CONNECTION_STRING
        pyodbc.pooling = False

    def connect(self) -> bool:
        """
        Establish a connection to the database.

        Returns:
            bool: True if connection was successful, False otherwise.
        """
        try:
            self.conn = pyodbc.connect(self.connection_string, autocommit=False)
            self.conn.setdecoding(pyodbc.SQL_CHAR, encoding='utf-8')
            logger.info("Successfully connected to database")
            return True
        except Exception as e:
            logger.error(f"Failed to connect to database: {e}")
            self.conn = None
            return False

    def close(self) -> None:
        """Close the database connection."""
        try:
            if self.conn:
                self.conn.close()
                self.conn = None
                logger.info("Database connection closed")
        except Exception as e:
            logger.error(f"Error closing database connection: {e}")

    def __enter__(self) -> "DatabaseConnection":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _rollback(self) -> None:
        try:
            self.conn.rollback()
        except Exception:
            logger.debug("Rollback failed", exc_info=True)

    def _require_connection(self) -> None:
        if not self.conn and not self.connect():
            raise QueryError("Database is unavailable")

    def execute_query(self, query: str, params: Optional[tuple] = None) -> Optional[List[Dict]]:
        """
        Execute a SQL query and return the results.

        Args:
            query: The SQL query to execute.
            params: Query parameters (optional).

        Returns:
            Optional[List[Dict]]: Query results as a list of dictionaries, or None if an error occurred.
        """
        if not self.conn and not self.connect():
            return None

        try:
            cursor = self.conn.cursor()
            if params:
                cursor.execute(query, params)
            else:
                cursor.execute(query)

            # Check if this is a SELECT query with results
            if cursor.description:
                columns = [column[0] for column in cursor.description]
                results = [dict(zip(columns, row)) for row in cursor.fetchall()]
                return results
            else:
                self.conn.commit()
                return []

        except Exception as e:
            logger.error(f"Error executing query: {e}")
            self._rollback()
            return None

    def _execute_write(self, query: str, params: tuple) -> int:
        """
        Execute an INSERT/UPDATE and commit.

        Returns:
            int: Number of affected rows.

        Raises:
            QueryError: If the database is unavailable or the statement fails.
        """
        self._require_connection()
        try:
            cursor = self.conn.cursor()
            cursor.execute(query, params)
            rowcount = cursor.rowcount
            self.conn.commit()
            return rowcount
        except pyodbc.Error as e:
            self._rollback()
            raise QueryError(f"Write failed: {e}") from e

    def _insert_returning_id(self, query: str, params: tuple) -> Optional[int]:
        """Execute an INSERT ... OUTPUT INSERTED.<id> and return the new id."""
        self._require_connection()
        try:
            cursor = self.conn.cursor()
            cursor.execute(query, params)
            row = cursor.fetchone()
            self.conn.commit()
            return int(row[0]) if row else None
        except pyodbc.IntegrityError:
            self._rollback()
            raise
        except pyodbc.Error as e:
            self._rollback()
            raise QueryError(f"Insert failed: {e}") from e

    # =========================================================================
    # Dedup Ledger
    # =========================================================================

    def is_link_processed(self, source: str, url: str) -> bool:
        query = """
        SELECT TOP 1 [Posted_Link_ID]
        FROM [dbo].[tbl_Posted_Link]
        WHERE [Source] = ? AND [URL] = ?
        """
        rows = self.execute_query(query, (source, url))
        if rows is None:
            raise QueryError(f"Could not check ledger for {url}")
        return len(rows) > 0

    def insert_posted_link(self, source: str, url: str, title: str) -> Optional[PostedLink]:
        """
        Insert a ledger row unless (source, url) already exists.

        The NOT EXISTS guard avoids most conflicts; the unique index on
        (Source, URL) settles the rest, surfacing as IntegrityError.

        Returns:
            Optional[PostedLink]: The new row, or None on conflict.
        """
        posted_at = datetime.now()
        query = """
        INSERT INTO [dbo].[tbl_Posted_Link] ([Source], [URL], [Title], [Posted_At])
        OUTPUT INSERTED.[Posted_Link_ID]
        SELECT ?, ?, ?, ?
        WHERE NOT EXISTS (
            SELECT 1 FROM [dbo].[tbl_Posted_Link] WITH (UPDLOCK, HOLDLOCK)
            WHERE [Source] = ? AND [URL] = ?
        )
        """
        try:
            link_id = self._insert_returning_id(query, (source, url, title, posted_at, source, url))
        except pyodbc.IntegrityError:
            logger.info(f"Ledger conflict for {url}, already committed by another run")
            return None

        if link_id is None:
            logger.info(f"Ledger already contains {url}")
            return None

        return PostedLink(id=link_id, url=url, title=title, source=source, posted_at=posted_at)

    # =========================================================================
    # News Cards
    # =========================================================================

    @staticmethod
    def _row_to_card(row: Dict[str, Any]) -> NewsCard:
        return NewsCard(
            id=row["News_Card_ID"],
            image_url=row.get("Image_URL") or "",
            status=CardStatus(row["Status"]),
            source_data=_json_loads(row.get("Source_Data"), {}),
            template_id=row.get("Template_ID") or "",
            mapping_id=row.get("Data_Mapping_ID"),
            user_id=row.get("User_ID"),
            created_at=row.get("Created_At") or datetime.now(),
        )

    def create_news_card(self, card: NewsCard) -> NewsCard:
        query = """
        INSERT INTO [dbo].[tbl_News_Card]
            ([User_ID], [Image_URL], [Status], [Source_Data], [Template_ID], [Data_Mapping_ID], [Created_At])
        OUTPUT INSERTED.[News_Card_ID]
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """
        card_id = self._insert_returning_id(query, (
            card.user_id, card.image_url, card.status.value, json.dumps(card.source_data),
            card.template_id, card.mapping_id, card.created_at,
        ))
        card.id = card_id
        logger.info(f"Created news card {card_id} with status {card.status.value}")
        return card

    def get_news_card(self, card_id: int) -> Optional[NewsCard]:
        rows = self.execute_query("SELECT * FROM [dbo].[tbl_News_Card] WHERE [News_Card_ID] = ?", (card_id,))
        if not rows:
            return None
        return self._row_to_card(rows[0])

    def update_card_status(self, card_id: int, status: CardStatus) -> bool:
        predecessors = status.allowed_predecessors()
        if not predecessors:
            return False
        placeholders = ", ".join("?" for _ in predecessors)
        query = f"""
        UPDATE [dbo].[tbl_News_Card]
        SET [Status] = ?, [Updated_At] = ?
        WHERE [News_Card_ID] = ? AND [Status] IN ({placeholders})
        """
        params = (status.value, datetime.now(), card_id, *[p.value for p in predecessors])
        updated = self._execute_write(query, params) == 1
        if not updated:
            logger.warning(f"Card {card_id} was not moved to {status.value}")
        return updated

    def update_card_image(self, card_id: int, image_url: str) -> bool:
        query = """
        UPDATE [dbo].[tbl_News_Card]
        SET [Image_URL] = ?, [Updated_At] = ?
        WHERE [News_Card_ID] = ?
        """
        return self._execute_write(query, (image_url, datetime.now(), card_id)) == 1

    # =========================================================================
    # Posts
    # =========================================================================

    @staticmethod
    def _row_to_post(row: Dict[str, Any]) -> Post:
        return Post(
            id=row["Post_ID"],
            news_card_id=row["News_Card_ID"],
            social_account_id=row["Social_Account_ID"],
            content=row.get("Content") or "",
            status=PostStatus(row["Status"]),
            scheduled_for=row.get("Scheduled_For"),
            posted_at=row.get("Posted_At"),
            platform_post_id=row.get("Platform_Post_ID"),
            platform_url=row.get("Platform_URL"),
            error_message=row.get("Error_Message"),
            created_at=row.get("Created_At") or datetime.now(),
        )

    def create_post(self, post: Post) -> Post:
        query = """
        INSERT INTO [dbo].[tbl_Post]
            ([News_Card_ID], [Social_Account_ID], [Content], [Status], [Scheduled_For],
             [Posted_At], [Platform_Post_ID], [Platform_URL], [Error_Message], [Created_At])
        OUTPUT INSERTED.[Post_ID]
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        post.id = self._insert_returning_id(query, (
            post.news_card_id, post.social_account_id, post.content, post.status.value,
            post.scheduled_for, post.posted_at, post.platform_post_id, post.platform_url,
            post.error_message, post.created_at,
        ))
        logger.info(f"Created post {post.id} for card {post.news_card_id} with status {post.status.value}")
        return post

    def get_post(self, post_id: int) -> Optional[Post]:
        rows = self.execute_query("SELECT * FROM [dbo].[tbl_Post] WHERE [Post_ID] = ?", (post_id,))
        if not rows:
            return None
        return self._row_to_post(rows[0])

    def get_due_posts(self, now: datetime, limit: int) -> List[Post]:
        query = """
        SELECT TOP (?) *
        FROM [dbo].[tbl_Post]
        WHERE [Status] = 'QUEUED' AND [Scheduled_For] <= ?
        ORDER BY [Scheduled_For] ASC, [Post_ID] ASC
        """
        rows = self.execute_query(query, (limit, now))
        if rows is None:
            raise QueryError("Could not load due posts")
        return [self._row_to_post(row) for row in rows]

    def mark_post_posted(self, post_id: int, platform_post_id: str, platform_url: str,
                         posted_at: datetime) -> bool:
        query = """
        UPDATE [dbo].[tbl_Post]
        SET [Status] = 'POSTED', [Platform_Post_ID] = ?, [Platform_URL] = ?, [Posted_At] = ?
        WHERE [Post_ID] = ? AND [Status] = 'QUEUED'
        """
        return self._execute_write(query, (platform_post_id, platform_url, posted_at, post_id)) == 1

    def mark_post_failed(self, post_id: int, error_message: str) -> bool:
        query = """
        UPDATE [dbo].[tbl_Post]
        SET [Status] = 'FAILED', [Error_Message] = ?
        WHERE [Post_ID] = ? AND [Status] = 'QUEUED'
        """
        return self._execute_write(query, (error_message[:4000], post_id)) == 1

    # =========================================================================
    # Autopilot Settings
    # =========================================================================

    @staticmethod
    def _row_to_settings(row: Dict[str, Any]) -> AutopilotSettings:
        try:
            action = SensitiveAction(row.get("Sensitive_Action") or SensitiveAction.SKIP.value)
        except ValueError:
            action = SensitiveAction.SKIP
        return AutopilotSettings(
            user_id=row["User_ID"],
            is_enabled=bool(row.get("Is_Enabled")),
            template_id=row.get("Template_ID"),
            source_id=row.get("Source_ID") or settings.NEWS_SOURCE_ID,
            check_interval=int(row.get("Check_Interval") or settings.DEFAULT_CHECK_INTERVAL_MINUTES),
            generate_cards=bool(row.get("Generate_Cards", True)),
            sensitive_filter=bool(row.get("Sensitive_Filter", True)),
            sensitive_action=action,
            notify_on_new_card=bool(row.get("Notify_On_New_Card", True)),
            auto_publish=bool(row.get("Auto_Publish", False)),
            social_account_id=row.get("Social_Account_ID"),
            publish_delay_minutes=int(row.get("Publish_Delay_Minutes") or 0),
            last_run_at=row.get("Last_Run_At"),
            last_error=row.get("Last_Error"),
        )

    def get_autopilot_settings(self, user_id: str) -> Optional[AutopilotSettings]:
        rows = self.execute_query("SELECT * FROM [dbo].[tbl_Autopilot_Settings] WHERE [User_ID] = ?", (user_id,))
        if rows is None:
            raise QueryError(f"Could not load autopilot settings for {user_id}")
        if not rows:
            return None
        return self._row_to_settings(rows[0])

    def list_enabled_autopilot_settings(self) -> List[AutopilotSettings]:
        rows = self.execute_query("SELECT * FROM [dbo].[tbl_Autopilot_Settings] WHERE [Is_Enabled] = 1")
        if rows is None:
            raise QueryError("Could not list enabled autopilot settings")
        return [self._row_to_settings(row) for row in rows]

    def save_autopilot_settings(self, autopilot_settings: AutopilotSettings) -> bool:
        s = autopilot_settings
        query = """
        MERGE [dbo].[tbl_Autopilot_Settings] WITH (HOLDLOCK) AS target
        USING (SELECT ? AS [User_ID]) AS source
        ON target.[User_ID] = source.[User_ID]
        WHEN MATCHED THEN UPDATE SET
            [Is_Enabled] = ?, [Template_ID] = ?, [Source_ID] = ?, [Check_Interval] = ?,
            [Generate_Cards] = ?, [Sensitive_Filter] = ?, [Sensitive_Action] = ?,
            [Notify_On_New_Card] = ?, [Auto_Publish] = ?, [Social_Account_ID] = ?,
            [Publish_Delay_Minutes] = ?
        WHEN NOT MATCHED THEN INSERT
            ([User_ID], [Is_Enabled], [Template_ID], [Source_ID], [Check_Interval],
             [Generate_Cards], [Sensitive_Filter], [Sensitive_Action], [Notify_On_New_Card],
             [Auto_Publish], [Social_Account_ID], [Publish_Delay_Minutes])
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
        """
        values = (
            s.is_enabled, s.template_id, s.source_id, s.check_interval, s.generate_cards,
            s.sensitive_filter, s.sensitive_action.value, s.notify_on_new_card, s.auto_publish,
            s.social_account_id, s.publish_delay_minutes,
        )
        return self._execute_write(query, (s.user_id, *values, s.user_id, *values)) >= 1

    def set_autopilot_enabled(self, user_id: str, enabled: bool) -> bool:
        query = "UPDATE [dbo].[tbl_Autopilot_Settings] SET [Is_Enabled] = ? WHERE [User_ID] = ?"
        return self._execute_write(query, (enabled, user_id)) == 1

    def claim_autopilot_run(self, user_id: str, now: datetime, min_gap: timedelta) -> bool:
        """
        Claim the next cycle for a user with one conditional UPDATE.

        Only one of several concurrent triggers sees rowcount 1.
        """
        query = """
        UPDATE [dbo].[tbl_Autopilot_Settings]
        SET [Last_Run_At] = ?
        WHERE [User_ID] = ? AND [Is_Enabled] = 1
          AND ([Last_Run_At] IS NULL OR [Last_Run_At] <= ?)
        """
        return self._execute_write(query, (now, user_id, now - min_gap)) == 1

    def update_autopilot_error(self, user_id: str, error: Optional[str]) -> bool:
        query = "UPDATE [dbo].[tbl_Autopilot_Settings] SET [Last_Error] = ? WHERE [User_ID] = ?"
        return self._execute_write(query, (error[:4000] if error else None, user_id)) == 1

    # =========================================================================
    # Autopilot Runs
    # =========================================================================

    @staticmethod
    def _row_to_run(row: Dict[str, Any]) -> AutopilotRun:
        return AutopilotRun(
            id=row["Autopilot_Run_ID"],
            user_id=row["User_ID"],
            status=RunStatus(row["Status"]),
            started_at=row["Started_At"],
            completed_at=row.get("Completed_At"),
            news_found=row.get("News_Found") or 0,
            cards_created=row.get("Cards_Created") or 0,
            skipped=row.get("Skipped") or 0,
            errors=_json_loads(row.get("Errors"), []),
        )

    def create_autopilot_run(self, run: AutopilotRun) -> AutopilotRun:
        query = """
        INSERT INTO [dbo].[tbl_Autopilot_Run] ([User_ID], [Status], [Started_At])
        OUTPUT INSERTED.[Autopilot_Run_ID]
        VALUES (?, ?, ?)
        """
        run.id = self._insert_returning_id(query, (run.user_id, run.status.value, run.started_at))
        return run

    def complete_autopilot_run(self, run: AutopilotRun) -> bool:
        query = """
        UPDATE [dbo].[tbl_Autopilot_Run]
        SET [Status] = ?, [Completed_At] = ?, [News_Found] = ?, [Cards_Created] = ?,
            [Skipped] = ?, [Errors] = ?
        WHERE [Autopilot_Run_ID] = ? AND [Completed_At] IS NULL
        """
        errors = json.dumps(run.errors) if run.errors else None
        return self._execute_write(query, (
            run.status.value, run.completed_at or datetime.now(), run.news_found,
            run.cards_created, run.skipped, errors, run.id,
        )) == 1

    def get_autopilot_runs(self, user_id: str, limit: int = 10,
                           since: Optional[datetime] = None) -> List[AutopilotRun]:
        if since is None:
            query = """
            SELECT TOP (?) * FROM [dbo].[tbl_Autopilot_Run]
            WHERE [User_ID] = ?
            ORDER BY [Started_At] DESC
            """
            params = (limit, user_id)
        else:
            query = """
            SELECT TOP (?) * FROM [dbo].[tbl_Autopilot_Run]
            WHERE [User_ID] = ? AND [Started_At] >= ?
            ORDER BY [Started_At] DESC
            """
            params = (limit, user_id, since)
        rows = self.execute_query(query, params)
        return [self._row_to_run(row) for row in rows or []]

    def get_run_history(self, user_id: str, limit: int = 10) -> Optional[pd.DataFrame]:
        """
        Retrieve run history as a DataFrame for reporting.

        Returns:
            Optional[pd.DataFrame]: One row per run, newest first, or None if an error occurred.
        """
        query = """
        SELECT TOP (?) [Autopilot_Run_ID], [Status], [Started_At], [Completed_At],
               [News_Found], [Cards_Created], [Skipped], [Errors]
        FROM [dbo].[tbl_Autopilot_Run]
        WHERE [User_ID] = ?
        ORDER BY [Started_At] DESC
        """
        try:
            if not self.conn and not self.connect():
                return None
            return pd.read_sql(query, self.conn, params=[limit, user_id])
        except Exception as e:
            logger.error(f"Error retrieving run history: {e}")
            return None

    # =========================================================================
    # Word Lists and Notifications
    # =========================================================================

    def get_sensitive_words(self, user_id: str) -> List[str]:
        rows = self.execute_query("SELECT [Word] FROM [dbo].[tbl_Sensitive_Word] WHERE [User_ID] = ?", (user_id,))
        return [row["Word"] for row in rows or [] if row.get("Word")]

    def create_notification(self, notification: Notification) -> Optional[int]:
        query = """
        INSERT INTO [dbo].[tbl_Notification] ([User_ID], [Title], [Message], [Link], [Is_Read], [Created_At])
        OUTPUT INSERTED.[Notification_ID]
        VALUES (?, ?, ?, ?, 0, ?)
        """
        try:
            notification.id = self._insert_returning_id(query, (
                notification.user_id, notification.title, notification.message,
                notification.link, notification.created_at,
            ))
            return notification.id
        except (QueryError, pyodbc.Error) as e:
            logger.error(f"Error creating notification: {e}")
            return None

    # =========================================================================
    # Read-only Collaborators
    # =========================================================================

    def _row_to_template(self, row: Dict[str, Any]) -> Template:
        return parse_template(
            row.get("Canvas_Data") or "{}",
            template_id=str(row["Template_ID"]),
            name=row.get("Name") or "",
            width=row.get("Canvas_Width"),
            height=row.get("Canvas_Height"),
        )

    def get_template(self, template_id: str) -> Optional[Template]:
        rows = self.execute_query("SELECT * FROM [dbo].[tbl_Template] WHERE [Template_ID] = ?", (template_id,))
        if not rows:
            return None
        return self._row_to_template(rows[0])

    def list_templates(self, user_id: Optional[str] = None) -> List[Template]:
        if user_id:
            rows = self.execute_query("SELECT * FROM [dbo].[tbl_Template] WHERE [User_ID] = ?", (user_id,))
        else:
            rows = self.execute_query("SELECT * FROM [dbo].[tbl_Template]")
        templates = []
        for row in rows or []:
            try:
                templates.append(self._row_to_template(row))
            except RenderError as e:
                logger.warning(f"Skipping malformed template {row.get('Template_ID')}: {e}")
        return templates

    def find_mapping(self, source_id: str, template_id: str) -> Optional[Mapping]:
        query = """
        SELECT TOP 1 * FROM [dbo].[tbl_Data_Mapping]
        WHERE [Source_ID] = ? AND [Template_ID] = ?
        ORDER BY [Data_Mapping_ID] DESC
        """
        rows = self.execute_query(query, (source_id, template_id))
        if not rows:
            return None
        row = rows[0]
        return Mapping.from_field_map(source_id, template_id, _json_loads(row.get("Field_Map"), {}),
                                      mapping_id=row["Data_Mapping_ID"])

    def get_social_account(self, account_id: str) -> Optional[SocialAccount]:
        rows = self.execute_query("SELECT * FROM [dbo].[tbl_Social_Account] WHERE [Social_Account_ID] = ?", (account_id,))
        if not rows:
            return None
        row = rows[0]
        return SocialAccount(
            id=str(row["Social_Account_ID"]),
            platform=row.get("Platform") or "facebook",
            page_id=row.get("Page_ID") or "",
            access_token=row.get("Access_Token") or "",
            name=row.get("Account_Name") or "",
        )
