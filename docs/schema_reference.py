"""
Database Schema Reference
=========================

This file provides a quick reference for all database tables and columns.
For actual SQLAlchemy models, see: lorastudio/db/models.py

"""

# ============================================================================
# USERS - End users, created on first authenticated request
# ============================================================================
#
# | Column     | Type              | Constraints                        |
# |------------|-------------------|------------------------------------|
# | id         | INTEGER           | PRIMARY KEY                        |
# | subject    | VARCHAR(255)      | NOT NULL, UNIQUE, INDEX            |
# | email      | VARCHAR(320)      | NOT NULL, DEFAULT ''               |
# | created_at | TIMESTAMP(TZ)     | NOT NULL, DEFAULT now()            |
#
# subject is the identity provider's user id (X-User-Id header).
#
# Relationships:
#   - models:          ONE-TO-MANY -> models.user_id
#   - generations:     ONE-TO-MANY -> generations.user_id
#   - payment_records: ONE-TO-MANY -> payment_records.user_id


# ============================================================================
# MODELS - Personalised image models produced by training jobs
# ============================================================================
#
# | Column        | Type               | Constraints                      |
# |---------------|--------------------|----------------------------------|
# | id            | INTEGER            | PRIMARY KEY                      |
# | user_id       | INTEGER            | NOT NULL, FK(users.id), INDEX    |
# | name          | VARCHAR(100)       | NOT NULL                         |
# | training_ref  | VARCHAR(100)       | NOT NULL, INDEX (training job id)|
# | version_ref   | VARCHAR(255)       | NULLABLE (set when Ready)        |
# | trigger_word  | VARCHAR(100)       | NOT NULL                         |
# | status        | ENUM(ModelStatus)  | NOT NULL, INDEX                  |
# | parameters    | JSON               | NOT NULL (trainer hyperparams)   |
# | error_message | TEXT               | NULLABLE (set when Failed)       |
# | created_at    | TIMESTAMP(TZ)      | NOT NULL, DEFAULT now()          |
# | updated_at    | TIMESTAMP(TZ)      | NOT NULL, DEFAULT now()          |
#
# Enums:
#   ModelStatus: 'Processing' | 'Ready' | 'Failed'
#
# Transitions:
#   Processing -> Ready | Failed   (Ready and Failed are terminal)


# ============================================================================
# GENERATIONS - One row per stored image
# ============================================================================
#
# | Column          | Type          | Constraints                       |
# |-----------------|---------------|-----------------------------------|
# | id              | INTEGER       | PRIMARY KEY                       |
# | user_id         | INTEGER       | NOT NULL, FK(users.id), INDEX     |
# | model_id        | INTEGER       | NOT NULL, FK(models.id), INDEX    |
# | prompt          | TEXT          | NOT NULL (as submitted)           |
# | enhanced_prompt | TEXT          | NULLABLE                          |
# | image_url       | TEXT          | NOT NULL                          |
# | created_at      | TIMESTAMP(TZ) | NOT NULL, DEFAULT now(), INDEX    |
#
# The daily quota counts rows of a user since 00:00 UTC.


# ============================================================================
# PAYMENT_RECORDS - Checkouts and subscriptions reported by Stripe
# ============================================================================
#
# | Column                    | Type          | Constraints               |
# |---------------------------|---------------|---------------------------|
# | id                        | INTEGER       | PRIMARY KEY               |
# | user_id                   | INTEGER       | NOT NULL, FK(users.id)    |
# | charge_ref                | VARCHAR(255)  | NOT NULL, UNIQUE, INDEX   |
# | processor_customer_id     | VARCHAR(255)  | NULLABLE, INDEX           |
# | processor_subscription_id | VARCHAR(255)  | NULLABLE, INDEX           |
# | status                    | VARCHAR(50)   | NOT NULL, INDEX           |
# | amount                    | NUMERIC(12,2) | NULLABLE (major units)    |
# | currency                  | VARCHAR(10)   | NULLABLE                  |
# | created_at                | TIMESTAMP(TZ) | NOT NULL, DEFAULT now()   |
# | updated_at                | TIMESTAMP(TZ) | NOT NULL, DEFAULT now()   |
#
# Status:
#   'active' grants Premium; 'canceled' and any other processor status do not.
#   The newest record of a user decides the plan.


# ============================================================================
# AUDIT_LOGS - Append-only trail of state changes
# ============================================================================
#
# | Column     | Type          | Constraints                          |
# |------------|---------------|--------------------------------------|
# | id         | INTEGER       | PRIMARY KEY                          |
# | user_id    | INTEGER       | NULLABLE, FK(users.id), INDEX        |
# | action     | VARCHAR(50)   | NOT NULL, INDEX                      |
# | details    | JSON          | NOT NULL                             |
# | created_at | TIMESTAMP(TZ) | NOT NULL, DEFAULT now()              |
#
# Actions:
#   'user_created'
#   'model_training_started', 'model_status_changed'
#   'image_generation', 'image_generation_failed', 'image_deleted'
#   'subscription_initiated', 'payment_successful'
#   'subscription_updated', 'subscription_canceled'


# ============================================================================
# INDEXES
# ============================================================================
#
# | Table           | Index Name                                | Columns               |
# |-----------------|-------------------------------------------|-----------------------|
# | users           | ix_users_subject                          | subject               |
# | models          | ix_models_user_id                         | user_id               |
# | models          | ix_models_status                          | status                |
# | generations     | ix_generations_user_created               | user_id, created_at   |
# | generations     | ix_generations_created_at                 | created_at            |
# | payment_records | ix_payment_records_charge_ref             | charge_ref            |
# | payment_records | ix_payment_records_processor_customer_id  | processor_customer_id |
# | audit_logs      | ix_audit_logs_action                      | action                |


# ============================================================================
# ER DIAGRAM (Text)
# ============================================================================
#
#  ┌──────────────┐
#  │    users     │
#  ├──────────────┤
#  │ id (PK)      │──────────┬──────────────────┬───────────────────┐
#  │ subject      │          │ 1:N              │ 1:N               │ 1:N
#  │ email        │          ▼                  ▼                   ▼
#  └──────────────┘  ┌──────────────┐   ┌────────────────┐  ┌──────────────┐
#                    │    models    │   │payment_records │  │  audit_logs  │
#                    ├──────────────┤   ├────────────────┤  ├──────────────┤
#                    │ id (PK)      │   │ charge_ref     │  │ action       │
#                    │ training_ref │   │ status         │  │ details      │
#                    │ version_ref  │   │ amount         │  └──────────────┘
#                    │ status       │   └────────────────┘
#                    └──────────────┘
#                           │ 1:N
#                           ▼
#                    ┌──────────────┐
#                    │ generations  │
#                    ├──────────────┤
#                    │ prompt       │
#                    │ image_url    │
#                    └──────────────┘
