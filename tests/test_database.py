"""
Tests for DatabaseConnection Class

Tests for the database module including connection management, query
execution, the dedup ledger, conditional status updates, run claiming
and row mapping.
"""

import json
import pytest
import pyodbc
from unittest.mock import patch
import pandas as pd
from datetime import datetime, timedelta
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from data.database import DatabaseConnection
from data.models import (
    AutopilotRun, AutopilotSettings, CardStatus, NewsCard, Notification, PostStatus, RunStatus,
    SensitiveAction,
)
from utils.exceptions import QueryError


@pytest.fixture
def db(mock_db_connection, mock_settings):
    database = DatabaseConnection()
    database.connect()
    return database


# =============================================================================
# Connection Tests
# =============================================================================

class TestConnectionManagement:
    """Tests for database connection management."""

    def test_connect_success(self, mock_db_connection, mock_settings):
        """
        Test successful database connection establishment.

        Verifies that connect() returns True and sets the connection
        when pyodbc.connect() succeeds.
        """
        db = DatabaseConnection()
        assert db.connect() is True
        assert db.conn is not None

    def test_connect_failure(self, mock_settings):
        """
        Test connection failure handling.

        Verifies that connect() returns False and conn remains None
        when pyodbc.connect() raises an exception.
        """
        with patch('pyodbc.connect') as mock_connect:
            mock_connect.side_effect = pyodbc.OperationalError("Connection failed")

            db = DatabaseConnection()

            assert db.connect() is False
            assert db.conn is None

    def test_close(self, db, mock_db_connection):
        mock_conn, _ = mock_db_connection
        db.close()
        mock_conn.close.assert_called_once()
        assert db.conn is None

    def test_context_manager_closes(self, mock_db_connection, mock_settings):
        mock_conn, _ = mock_db_connection
        with DatabaseConnection() as db:
            db.connect()
        mock_conn.close.assert_called_once()

    def test_write_without_database_raises(self, mock_settings):
        with patch('pyodbc.connect', side_effect=pyodbc.OperationalError("down")):
            db = DatabaseConnection()
            with pytest.raises(QueryError):
                db.set_autopilot_enabled("user-1", True)


class TestExecuteQuery:
    """Tests for execute_query."""

    def test_select_returns_dicts(self, db, mock_db_connection):
        _, cursor = mock_db_connection
        cursor.description = [('id',), ('name',)]
        cursor.fetchall.return_value = [(1, 'a'), (2, 'b')]

        assert db.execute_query("SELECT id, name FROM t") == [{'id': 1, 'name': 'a'}, {'id': 2, 'name': 'b'}]

    def test_non_select_commits(self, db, mock_db_connection):
        conn, cursor = mock_db_connection
        cursor.description = None

        assert db.execute_query("DELETE FROM t WHERE id = ?", (1,)) == []
        conn.commit.assert_called()

    def test_error_rolls_back(self, db, mock_db_connection):
        conn, cursor = mock_db_connection
        cursor.execute.side_effect = pyodbc.ProgrammingError("bad sql")

        assert db.execute_query("SELECT nonsense") is None
        conn.rollback.assert_called_once()


# =============================================================================
# Ledger Tests
# =============================================================================

class TestPostedLinks:
    """Tests for the dedup ledger queries."""

    def test_insert_returns_link(self, db, mock_db_connection):
        _, cursor = mock_db_connection
        cursor.fetchone.return_value = (42,)

        link = db.insert_posted_link("guardian", "https://news.example.com/national/1", "Title")

        assert link.id == 42
        assert link.source == "guardian"
        sql = cursor.execute.call_args.args[0]
        assert "WHERE NOT EXISTS" in sql

    def test_insert_existing_returns_none(self, db, mock_db_connection):
        _, cursor = mock_db_connection
        cursor.fetchone.return_value = None
        assert db.insert_posted_link("guardian", "https://news.example.com/national/1", "Title") is None

    def test_unique_violation_returns_none(self, db, mock_db_connection):
        conn, cursor = mock_db_connection
        cursor.execute.side_effect = pyodbc.IntegrityError("duplicate key")

        assert db.insert_posted_link("guardian", "https://news.example.com/national/1", "Title") is None
        conn.rollback.assert_called_once()

    def test_is_link_processed(self, db, mock_db_connection):
        _, cursor = mock_db_connection
        cursor.description = [('Posted_Link_ID',)]
        cursor.fetchall.return_value = [(7,)]
        assert db.is_link_processed("guardian", "https://news.example.com/national/1") is True

    def test_is_link_processed_failure_raises(self, db, mock_db_connection):
        _, cursor = mock_db_connection
        cursor.execute.side_effect = pyodbc.Error("lost connection")
        with pytest.raises(QueryError):
            db.is_link_processed("guardian", "https://news.example.com/national/1")


# =============================================================================
# Card and Post Tests
# =============================================================================

class TestCards:
    """Tests for news card persistence."""

    def test_create_news_card(self, db, mock_db_connection):
        _, cursor = mock_db_connection
        cursor.fetchone.return_value = (5,)
        card = NewsCard(id=None, image_url="data:image/png;base64,AA==", status=CardStatus.GENERATED,
                        source_data={"title": "T"}, template_id="tpl-1", user_id="user-1")

        created = db.create_news_card(card)

        assert created.id == 5
        params = cursor.execute.call_args.args[1]
        assert params[2] == "GENERATED"
        assert json.loads(params[3]) == {"title": "T"}

    def test_update_status_guards_predecessors(self, db, mock_db_connection):
        _, cursor = mock_db_connection
        cursor.rowcount = 1

        assert db.update_card_status(5, CardStatus.POSTED) is True

        sql, params = cursor.execute.call_args.args
        assert "[Status] IN (?)" in sql
        assert params[-1] == "GENERATED"

    def test_update_status_conflict(self, db, mock_db_connection):
        _, cursor = mock_db_connection
        cursor.rowcount = 0
        assert db.update_card_status(5, CardStatus.FAILED) is False

    def test_draft_has_no_predecessor(self, db, mock_db_connection):
        _, cursor = mock_db_connection
        assert db.update_card_status(5, CardStatus.DRAFT) is False
        cursor.execute.assert_not_called()

    def test_get_news_card_maps_row(self, db, mock_db_connection):
        _, cursor = mock_db_connection
        cursor.description = [('News_Card_ID',), ('Image_URL',), ('Status',), ('Source_Data',),
                              ('Template_ID',), ('Data_Mapping_ID',), ('User_ID',), ('Created_At',)]
        cursor.fetchall.return_value = [(5, "", "QUEUED", '{"link": "https://x/1"}', "tpl-1", None, "u",
                                         datetime(2026, 1, 5))]

        card = db.get_news_card(5)

        assert card.status == CardStatus.QUEUED
        assert card.link == "https://x/1"


class TestPosts:
    """Tests for post persistence."""

    def test_mark_posted_only_from_queued(self, db, mock_db_connection):
        _, cursor = mock_db_connection
        cursor.rowcount = 1

        assert db.mark_post_posted(3, "page_1", "https://facebook.com/page_1", datetime(2026, 1, 5)) is True
        assert "[Status] = 'QUEUED'" in cursor.execute.call_args.args[0]

    def test_mark_failed_truncates_message(self, db, mock_db_connection):
        _, cursor = mock_db_connection
        cursor.rowcount = 1

        db.mark_post_failed(3, "x" * 5000)

        assert len(cursor.execute.call_args.args[1][0]) == 4000

    def test_get_due_posts(self, db, mock_db_connection):
        _, cursor = mock_db_connection
        cursor.description = [('Post_ID',), ('News_Card_ID',), ('Social_Account_ID',), ('Content',),
                              ('Status',), ('Scheduled_For',)]
        cursor.fetchall.return_value = [(1, 2, "fb-1", "Caption", "QUEUED", datetime(2026, 1, 5))]

        posts = db.get_due_posts(datetime(2026, 1, 6), 10)

        assert posts[0].status == PostStatus.QUEUED
        assert cursor.execute.call_args.args[1][0] == 10


# =============================================================================
# Autopilot Tests
# =============================================================================

class TestAutopilot:
    """Tests for autopilot settings and runs."""

    def test_claim_uses_gap(self, db, mock_db_connection):
        _, cursor = mock_db_connection
        cursor.rowcount = 1
        now = datetime(2026, 1, 5, 12, 0)

        assert db.claim_autopilot_run("user-1", now, timedelta(minutes=15)) is True

        params = cursor.execute.call_args.args[1]
        assert params == (now, "user-1", now - timedelta(minutes=15))

    def test_claim_lost(self, db, mock_db_connection):
        _, cursor = mock_db_connection
        cursor.rowcount = 0
        assert db.claim_autopilot_run("user-1", datetime(2026, 1, 5), timedelta(minutes=15)) is False

    def test_settings_row_mapping(self, db, mock_db_connection):
        _, cursor = mock_db_connection
        cursor.description = [('User_ID',), ('Is_Enabled',), ('Template_ID',), ('Check_Interval',),
                              ('Sensitive_Action',), ('Publish_Delay_Minutes',)]
        cursor.fetchall.return_value = [("user-1", 1, "tpl-1", 30, "mask", None)]

        found = db.get_autopilot_settings("user-1")

        assert isinstance(found, AutopilotSettings)
        assert found.is_enabled is True
        assert found.check_interval == 30
        assert found.sensitive_action == SensitiveAction.MASK
        assert found.publish_delay_minutes == 0

    def test_unknown_sensitive_action_defaults_to_skip(self, db, mock_db_connection):
        _, cursor = mock_db_connection
        cursor.description = [('User_ID',), ('Sensitive_Action',)]
        cursor.fetchall.return_value = [("user-1", "explode")]
        assert db.get_autopilot_settings("user-1").sensitive_action == SensitiveAction.SKIP

    def test_complete_run_serializes_errors(self, db, mock_db_connection):
        _, cursor = mock_db_connection
        cursor.rowcount = 1
        run = AutopilotRun(id=9, user_id="user-1", status=RunStatus.COMPLETED, started_at=datetime(2026, 1, 5),
                           completed_at=datetime(2026, 1, 5, 0, 1), errors=["one"])

        assert db.complete_autopilot_run(run) is True

        params = cursor.execute.call_args.args[1]
        assert json.loads(params[5]) == ["one"]
        assert "[Completed_At] IS NULL" in cursor.execute.call_args.args[0]

    def test_get_runs_since(self, db, mock_db_connection):
        _, cursor = mock_db_connection
        cursor.description = [('Autopilot_Run_ID',), ('User_ID',), ('Status',), ('Started_At',), ('Errors',)]
        cursor.fetchall.return_value = [(1, "user-1", "COMPLETED", datetime(2026, 1, 5), '["e"]')]
        since = datetime(2026, 1, 5)

        runs = db.get_autopilot_runs("user-1", 50, since=since)

        assert runs[0].errors == ["e"]
        assert cursor.execute.call_args.args[1] == (50, "user-1", since)

    def test_get_run_history(self, db):
        frame = pd.DataFrame([{"Autopilot_Run_ID": 1, "Status": "COMPLETED"}])
        with patch('data.database.pd.read_sql', return_value=frame) as mock_read:
            result = db.get_run_history("user-1", 5)
        assert result.equals(frame)
        assert mock_read.call_args.kwargs['params'] == [5, "user-1"]

    def test_notification_failure_returns_none(self, db, mock_db_connection):
        _, cursor = mock_db_connection
        cursor.execute.side_effect = pyodbc.Error("insert failed")
        assert db.create_notification(Notification(user_id="u", title="t", message="m")) is None


class TestReadOnlyCollaborators:
    """Tests for template, mapping and account lookups."""

    def test_get_template_parses_canvas(self, db, mock_db_connection, template_data):
        _, cursor = mock_db_connection
        cursor.description = [('Template_ID',), ('Name',), ('Canvas_Data',), ('Canvas_Width',), ('Canvas_Height',)]
        cursor.fetchall.return_value = [(3, "Card", json.dumps(template_data), 1080, 1080)]

        template = db.get_template("3")

        assert template.id == "3"
        assert template.canvas_width == 1080
        assert len(template.objects) == 4

    def test_list_templates_skips_malformed(self, db, mock_db_connection):
        _, cursor = mock_db_connection
        cursor.description = [('Template_ID',), ('Canvas_Data',)]
        cursor.fetchall.return_value = [(1, '{"objects": []}'), (2, '{broken')]

        assert [t.id for t in db.list_templates()] == ["1"]

    def test_find_mapping(self, db, mock_db_connection):
        _, cursor = mock_db_connection
        cursor.description = [('Data_Mapping_ID',), ('Field_Map',)]
        cursor.fetchall.return_value = [(4, '{"title": "title", "_social_caption_field": "subtitle"}')]

        mapping = db.find_mapping("guardian", "tpl-1")

        assert mapping.id == 4
        assert mapping.caption_field == "subtitle"

    def test_get_social_account(self, db, mock_db_connection):
        _, cursor = mock_db_connection
        cursor.description = [('Social_Account_ID',), ('Page_ID',), ('Access_Token',)]
        cursor.fetchall.return_value = [(1, "page-123", "token")]

        account = db.get_social_account("1")

        assert account.id == "1"
        assert account.platform == "facebook"
