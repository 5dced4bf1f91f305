# Credential Database Schema
# This file defines the schema for the shared credentials.db database

CREDENTIAL_SCHEMA = """
-- credentials.db - Shared authentication database
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,                               -- uuid4, never reused
    username TEXT NOT NULL UNIQUE COLLATE NOCASE,      -- Stored lower-cased
    email TEXT NOT NULL UNIQUE COLLATE NOCASE,         -- Stored lower-cased
    password_hash TEXT,                                -- bcrypt hash, NULL for OAuth-only accounts
    google_id TEXT UNIQUE,                             -- Linked Google account
    profile_picture TEXT,
    first_name TEXT,
    last_name TEXT,
    database_name TEXT UNIQUE,                         -- Tenant resource pointer
    is_admin INTEGER NOT NULL DEFAULT 0,
    is_active INTEGER NOT NULL DEFAULT 1,
    email_verified INTEGER NOT NULL DEFAULT 0,
    failed_login_attempts INTEGER NOT NULL DEFAULT 0,
    locked_until TEXT,                                 -- UTC ISO timestamp
    last_login TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    CHECK (password_hash IS NOT NULL OR google_id IS NOT NULL)
);

CREATE TABLE IF NOT EXISTS user_sessions (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    token_hash TEXT NOT NULL,                          -- sha256 of the access token
    refresh_token_hash TEXT NOT NULL UNIQUE,           -- sha256 of the refresh token
    expires_at TEXT NOT NULL,
    refresh_expires_at TEXT NOT NULL,
    ip_address TEXT,
    user_agent TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    last_used TEXT
);

CREATE INDEX IF NOT EXISTS idx_users_active ON users(is_active);
CREATE INDEX IF NOT EXISTS idx_users_last_login ON users(last_login);
CREATE INDEX IF NOT EXISTS idx_sessions_user ON user_sessions(user_id);
CREATE INDEX IF NOT EXISTS idx_sessions_token ON user_sessions(token_hash);
CREATE INDEX IF NOT EXISTS idx_sessions_expiry ON user_sessions(expires_at, refresh_expires_at);
"""
