"""
Database Schema Reference
=========================

This file provides a quick reference for all database tables and columns.
For actual SQLAlchemy models, see: diary_media/db/models.py

"""

# ============================================================================
# USERS - Diary owners
# ============================================================================
#
# | Column     | Type          | Constraints              |
# |------------|---------------|--------------------------|
# | id         | UUID          | PRIMARY KEY              |
# | username   | VARCHAR(100)  | NOT NULL, UNIQUE         |
# | created_at | TIMESTAMP(TZ) | NOT NULL, DEFAULT now()  |
#
# Referenced by:
#   - api_keys.user_id (CASCADE DELETE)
#   - entries.user_id  (CASCADE DELETE)


# ============================================================================
# API_KEYS - API keys, each acting on behalf of one user
# ============================================================================
#
# | Column                | Type              | Constraints                    |
# |-----------------------|-------------------|--------------------------------|
# | id                    | UUID              | PRIMARY KEY                    |
# | user_id               | UUID              | NOT NULL, FK(users.id), INDEX  |
# | key_hash              | VARCHAR(255)      | NOT NULL, UNIQUE, INDEX        |
# | key_prefix            | VARCHAR(12)       | NOT NULL, INDEX                |
# | name                  | VARCHAR(100)      | NOT NULL                       |
# | scopes                | JSON              | DEFAULT []                     |
# | rate_limit_per_minute | INTEGER           | NOT NULL, DEFAULT 60           |
# | rate_limit_per_hour   | INTEGER           | NOT NULL, DEFAULT 500          |
# | is_active             | BOOLEAN           | NOT NULL, DEFAULT TRUE         |
# | created_at            | TIMESTAMP(TZ)     | NOT NULL, DEFAULT now()        |
# | expires_at            | TIMESTAMP(TZ)     | NULLABLE                       |
#
# Scopes:
#   'media:read'  - read media, transcripts and entry media lists
#   'media:write' - upload, retry enrichment, delete


# ============================================================================
# ENTRIES - Diary entries (only what the media pipeline needs)
# ============================================================================
#
# | Column     | Type          | Constraints                     |
# |------------|---------------|---------------------------------|
# | id         | UUID          | PRIMARY KEY                     |
# | user_id    | UUID          | NOT NULL, FK(users.id), INDEX   |
# | title      | VARCHAR(255)  | NULLABLE                        |
# | created_at | TIMESTAMP(TZ) | NOT NULL, DEFAULT now()         |
#
# Relationships:
#   - media_files: ONE-TO-MANY -> media_files.entry_id (CASCADE DELETE)


# ============================================================================
# MEDIA_FILES - One uploaded asset attached to an entry
# ============================================================================
#
# | Column              | Type                   | Constraints                     |
# |---------------------|------------------------|---------------------------------|
# | id                  | UUID                   | PRIMARY KEY                     |
# | entry_id            | UUID                   | NOT NULL, FK(entries.id), INDEX |
# | storage_key         | VARCHAR(255)           | NOT NULL, UNIQUE                |
# | url                 | TEXT                   | NOT NULL                        |
# | original_name       | VARCHAR(255)           | NOT NULL                        |
# | mime_type           | VARCHAR(100)           | NOT NULL                        |
# | media_kind          | ENUM(MediaKind)        | NOT NULL                        |
# | size_bytes          | BIGINT                 | NOT NULL                        |
# | duration_seconds    | FLOAT                  | NULLABLE (set by transcription) |
# | caption             | TEXT                   | NULLABLE                        |
# | enrichment_state    | ENUM(EnrichmentState)  | NOT NULL, INDEX                 |
# | enrichment_error    | TEXT                   | NULLABLE                        |
# | enrichment_attempts | INTEGER                | NOT NULL, DEFAULT 0             |
# | pending_since       | TIMESTAMP(TZ)          | NULLABLE, INDEX                 |
# | created_at          | TIMESTAMP(TZ)          | NOT NULL, DEFAULT now(), INDEX  |
# | enriched_at         | TIMESTAMP(TZ)          | NULLABLE                        |
#
# Enums:
#   MediaKind:       'image' | 'audio' | 'video' | 'other'
#   EnrichmentState: 'not_applicable' | 'pending' | 'succeeded' | 'failed'
#
# Enrichment state transitions (audio only):
#   pending -> succeeded | failed
#   failed  -> pending            (manual retry)
#   succeeded is never demoted by a later failure
#
# Storage key format:
#   '{epoch-millis}-{12 hex chars}{ext}', e.g. '1718000000000-9f3ab2c41d7e.webm'


# ============================================================================
# TRANSCRIPTIONS - Recognized text, at most one per media file
# ============================================================================
#
# | Column        | Type          | Constraints                                 |
# |---------------|---------------|---------------------------------------------|
# | id            | UUID          | PRIMARY KEY                                 |
# | media_file_id | UUID          | NOT NULL, UNIQUE, FK(media_files.id), INDEX |
# | text          | TEXT          | NOT NULL                                    |
# | confidence    | INTEGER       | NULLABLE (0-100)                            |
# | language      | VARCHAR(10)   | NOT NULL, DEFAULT 'en'                      |
# | created_at    | TIMESTAMP(TZ) | NOT NULL, DEFAULT now()                     |
#
# A transcription row exists only while its media file is 'succeeded'.


# ============================================================================
# ER DIAGRAM (Text)
# ============================================================================
#
#  ┌──────────────┐        ┌──────────────┐
#  │    users     │───1:N─►│   api_keys   │
#  └──────────────┘        └──────────────┘
#         │ 1:N
#         ▼
#  ┌──────────────┐
#  │   entries    │
#  └──────────────┘
#         │ 1:N (CASCADE)
#         ▼
#  ┌──────────────┐
#  │ media_files  │
#  └──────────────┘
#         │ 1:0..1 (CASCADE)
#         ▼
#  ┌──────────────┐
#  │transcriptions│
#  └──────────────┘
