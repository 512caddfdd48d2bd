"""initial schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-05

"""
from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto;")

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS workspaces (
          id          TEXT PRIMARY KEY,
          name        TEXT NOT NULL,
          created_at  TIMESTAMPTZ NOT NULL DEFAULT now()
        );
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS transcripts (
          workspace_id     TEXT NOT NULL REFERENCES workspaces(id) ON DELETE CASCADE,
          id               TEXT NOT NULL,
          name             TEXT NOT NULL,
          video_url        TEXT,
          audio_url        TEXT,
          mux_playback_id  TEXT,
          created_at       TIMESTAMPTZ NOT NULL DEFAULT now(),
          updated_at       TIMESTAMPTZ NOT NULL DEFAULT now(),
          PRIMARY KEY (workspace_id, id)
        );
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS speakers (
          id          TEXT PRIMARY KEY,
          name        TEXT NOT NULL,
          profile_id  TEXT,
          created_at  TIMESTAMPTZ NOT NULL DEFAULT now()
        );
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS speaker_tags (
          id          UUID PRIMARY KEY DEFAULT gen_random_uuid(),
          label       TEXT NOT NULL,
          speaker_id  TEXT REFERENCES speakers(id) ON DELETE SET NULL,
          created_at  TIMESTAMPTZ NOT NULL DEFAULT now()
        );
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS speaker_segments (
          id               UUID PRIMARY KEY DEFAULT gen_random_uuid(),
          workspace_id     TEXT NOT NULL,
          transcript_id    TEXT NOT NULL,
          speaker_tag_id   UUID NOT NULL REFERENCES speaker_tags(id),
          start_timestamp  DOUBLE PRECISION NOT NULL,
          end_timestamp    DOUBLE PRECISION NOT NULL,
          created_at       TIMESTAMPTZ NOT NULL DEFAULT now(),
          FOREIGN KEY (workspace_id, transcript_id)
            REFERENCES transcripts(workspace_id, id) ON DELETE CASCADE,
          CHECK (start_timestamp <= end_timestamp)
        );
        """
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS speaker_segments_transcript_ts_idx "
        "ON speaker_segments (workspace_id, transcript_id, start_timestamp);"
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS utterances (
          id                  BIGSERIAL PRIMARY KEY,
          speaker_segment_id  UUID NOT NULL REFERENCES speaker_segments(id) ON DELETE CASCADE,
          start_timestamp     DOUBLE PRECISION NOT NULL,
          end_timestamp       DOUBLE PRECISION NOT NULL,
          text                TEXT NOT NULL,
          drift               DOUBLE PRECISION,
          CHECK (start_timestamp <= end_timestamp)
        );
        """
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS utterances_segment_ts_idx "
        "ON utterances (speaker_segment_id, start_timestamp);"
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS subjects (
          id                 TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
          workspace_id       TEXT NOT NULL,
          transcript_id      TEXT NOT NULL,
          name               TEXT NOT NULL,
          description        TEXT NOT NULL DEFAULT '',
          agenda_item_index  INT,
          introduced_by_id   TEXT REFERENCES speakers(id) ON DELETE SET NULL,
          topic_label        TEXT,
          created_at         TIMESTAMPTZ NOT NULL DEFAULT now(),
          FOREIGN KEY (workspace_id, transcript_id)
            REFERENCES transcripts(workspace_id, id) ON DELETE CASCADE
        );
        """
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS subjects_target_idx "
        "ON subjects (workspace_id, transcript_id, agenda_item_index);"
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS decisions (
          subject_id       TEXT PRIMARY KEY,
          pdf_url          TEXT NOT NULL,
          ada              TEXT,
          protocol_number  TEXT,
          title            TEXT,
          issue_date       TIMESTAMPTZ,
          created_at       TIMESTAMPTZ NOT NULL DEFAULT now(),
          updated_at       TIMESTAMPTZ NOT NULL DEFAULT now()
        );
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS task_statuses (
          id                UUID PRIMARY KEY DEFAULT gen_random_uuid(),
          workspace_id      TEXT NOT NULL,
          transcript_id     TEXT NOT NULL,
          type              TEXT NOT NULL,
          status            TEXT NOT NULL,
          stage             TEXT,
          percent_complete  REAL,
          request_body      TEXT,
          response_body     TEXT,
          version           INT,
          created_at        TIMESTAMPTZ NOT NULL DEFAULT now(),
          updated_at        TIMESTAMPTZ NOT NULL DEFAULT now(),
          FOREIGN KEY (workspace_id, transcript_id)
            REFERENCES transcripts(workspace_id, id) ON DELETE CASCADE,
          CHECK (status IN ('pending', 'succeeded', 'failed'))
        );
        """
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS task_statuses_active_idx "
        "ON task_statuses (workspace_id, transcript_id, type) "
        "WHERE status = 'pending';"
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS task_statuses_target_created_idx "
        "ON task_statuses (workspace_id, transcript_id, created_at DESC);"
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS task_statuses_type_version_idx "
        "ON task_statuses (type, version);"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS task_statuses;")
    op.execute("DROP TABLE IF EXISTS decisions;")
    op.execute("DROP TABLE IF EXISTS subjects;")
    op.execute("DROP TABLE IF EXISTS utterances;")
    op.execute("DROP TABLE IF EXISTS speaker_segments;")
    op.execute("DROP TABLE IF EXISTS speaker_tags;")
    op.execute("DROP TABLE IF EXISTS speakers;")
    op.execute("DROP TABLE IF EXISTS transcripts;")
    op.execute("DROP TABLE IF EXISTS workspaces;")
