"""Baseline migration - activation pipeline tables

Revision ID: 0001_activation_baseline
Revises: 
Create Date: 2026-10-19

Creates tenant/user tables, the lead and campaign fields the activation flow
reads, and the pipeline, meeting, lifecycle and payout tables.
"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '0001_activation_baseline'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create activation tables."""

    op.execute('CREATE EXTENSION IF NOT EXISTS pgcrypto')  # For gen_random_uuid()

    # ==========================================================================
    # Organizations and users
    # ==========================================================================
    op.execute('''
        CREATE TABLE organizations (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name VARCHAR(255) NOT NULL,
            slug VARCHAR(100) UNIQUE NOT NULL,
            timezone VARCHAR(50) NOT NULL DEFAULT 'America/New_York',
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    op.execute('''
        CREATE TABLE users (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            email VARCHAR(255) UNIQUE NOT NULL,
            display_name VARCHAR(255) NOT NULL,
            phone VARCHAR(50),
            is_activator BOOLEAN NOT NULL DEFAULT false,
            sdr_code VARCHAR(50) UNIQUE,
            token_version INTEGER NOT NULL DEFAULT 1,
            is_active BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_users_org ON users(organization_id)')
    op.execute('CREATE INDEX idx_users_activator ON users(organization_id, is_activator)')

    # ==========================================================================
    # Campaigns and leads
    # ==========================================================================
    op.execute('''
        CREATE TABLE campaigns (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            name VARCHAR(255) NOT NULL,
            bonus_rules JSONB,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_campaigns_org ON campaigns(organization_id)')

    op.execute('''
        CREATE TABLE leads (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            name VARCHAR(255),
            contact_name VARCHAR(255),
            email VARCHAR(255),
            phone VARCHAR(50),
            phone_digits VARCHAR(10),
            website VARCHAR(500),
            lead_status VARCHAR(50),
            assigned_to UUID REFERENCES users(id) ON DELETE SET NULL,
            assigned_campaign_id UUID REFERENCES campaigns(id) ON DELETE SET NULL,
            sdr_first_touch_code VARCHAR(50),
            sdr_last_touch_code VARCHAR(50),
            badge_key VARCHAR(50),
            next_follow_up_at TIMESTAMPTZ,
            client_status VARCHAR(50),
            client_plan VARCHAR(50),
            client_trial_ends_at TIMESTAMPTZ,
            client_activated_at TIMESTAMPTZ,
            client_snippet_installed_at TIMESTAMPTZ,
            client_snippet_domain VARCHAR(255),
            client_credits_left INTEGER,
            client_mrr NUMERIC(10, 2),
            client_paid_at TIMESTAMPTZ,
            notes TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_leads_org ON leads(organization_id)')
    op.execute('CREATE INDEX idx_leads_email ON leads(email)')
    op.execute('CREATE INDEX idx_leads_campaign ON leads(assigned_campaign_id)')
    op.execute('CREATE INDEX idx_leads_org_phone_digits ON leads(organization_id, phone_digits)')

    # ==========================================================================
    # Activation pipelines
    # ==========================================================================
    op.execute('''
        CREATE TABLE activation_pipelines (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            crm_lead_id UUID UNIQUE NOT NULL REFERENCES leads(id) ON DELETE CASCADE,
            external_user_id VARCHAR(255),
            owner_sdr_id UUID REFERENCES users(id) ON DELETE SET NULL,
            assigned_activator_id UUID REFERENCES users(id) ON DELETE SET NULL,
            activation_status VARCHAR(20) NOT NULL DEFAULT 'queued',
            activation_kill_reason VARCHAR(100),
            last_meeting_outcome VARCHAR(50),
            no_show_count INTEGER NOT NULL DEFAULT 0,
            reschedule_count INTEGER NOT NULL DEFAULT 0,
            trial_started_at TIMESTAMPTZ,
            password_set_at TIMESTAMPTZ,
            first_login_at TIMESTAMPTZ,
            calculator_modified_at TIMESTAMPTZ,
            embed_snippet_copied_at TIMESTAMPTZ,
            first_lead_received_at TIMESTAMPTZ,
            activated_at TIMESTAMPTZ,
            converted_at TIMESTAMPTZ,
            no_show_at TIMESTAMPTZ,
            marked_lost_at TIMESTAMPTZ,
            calculator_installed_at TIMESTAMPTZ,
            blocked_at TIMESTAMPTZ,
            install_url VARCHAR(500),
            followup_owner_role VARCHAR(20),
            next_followup_at TIMESTAMPTZ,
            next_action VARCHAR(255),
            followup_reason TEXT,
            block_reason TEXT,
            block_owner VARCHAR(50),
            next_step TEXT,
            scheduled_start_at TIMESTAMPTZ,
            scheduled_end_at TIMESTAMPTZ,
            trial_ends_at TIMESTAMPTZ,
            credits_remaining INTEGER,
            plan VARCHAR(50),
            mrr NUMERIC(10, 2),
            bonus_state VARCHAR(20),
            last_event_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_pipelines_org_status ON activation_pipelines(organization_id, activation_status)')
    op.execute('CREATE INDEX idx_pipelines_external_user ON activation_pipelines(external_user_id)')
    op.execute('CREATE INDEX idx_pipelines_blocked ON activation_pipelines(activation_status, blocked_at)')

    # ==========================================================================
    # Availability and meetings
    # ==========================================================================
    op.execute('''
        CREATE TABLE availability_shifts (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            day_of_week INTEGER NOT NULL,
            start_time TIME NOT NULL,
            end_time TIME NOT NULL,
            timezone VARCHAR(50) NOT NULL DEFAULT 'America/New_York',
            meeting_duration_minutes INTEGER NOT NULL DEFAULT 30,
            buffer_before_minutes INTEGER NOT NULL DEFAULT 15,
            buffer_after_minutes INTEGER NOT NULL DEFAULT 15,
            max_meetings_per_day INTEGER NOT NULL DEFAULT 6,
            min_notice_hours INTEGER NOT NULL DEFAULT 2,
            booking_window_days INTEGER NOT NULL DEFAULT 14,
            meeting_link VARCHAR(500),
            is_accepting_meetings BOOLEAN NOT NULL DEFAULT true,
            is_active BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT ck_shift_day_of_week CHECK (day_of_week >= 0 AND day_of_week <= 6)
        )
    ''')
    op.execute('CREATE INDEX idx_availability_shifts_user ON availability_shifts(user_id, day_of_week)')
    op.execute('CREATE INDEX idx_availability_shifts_org ON availability_shifts(organization_id)')

    op.execute('''
        CREATE TABLE activation_meetings (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            pipeline_id UUID NOT NULL REFERENCES activation_pipelines(id) ON DELETE CASCADE,
            lead_id UUID NOT NULL REFERENCES leads(id) ON DELETE CASCADE,
            parent_meeting_id UUID REFERENCES activation_meetings(id) ON DELETE SET NULL,
            attempt_number INTEGER NOT NULL DEFAULT 1,
            scheduled_start_at TIMESTAMPTZ NOT NULL,
            scheduled_end_at TIMESTAMPTZ NOT NULL,
            scheduled_timezone VARCHAR(50) NOT NULL,
            activator_user_id UUID NOT NULL REFERENCES users(id) ON DELETE RESTRICT,
            scheduled_by_sdr_user_id UUID REFERENCES users(id) ON DELETE SET NULL,
            attendee_name VARCHAR(255),
            attendee_role VARCHAR(100),
            attendee_email VARCHAR(255),
            attendee_phone VARCHAR(50),
            website_url VARCHAR(500),
            website_platform VARCHAR(100),
            goal TEXT,
            meeting_link VARCHAR(500),
            sdr_notes TEXT,
            status VARCHAR(20) NOT NULL DEFAULT 'scheduled',
            outcome VARCHAR(50),
            outcome_notes TEXT,
            proof_method VARCHAR(100),
            install_url VARCHAR(500),
            lead_delivery_methods JSONB,
            block_reason TEXT,
            block_owner VARCHAR(50),
            next_step TEXT,
            followup_at TIMESTAMPTZ,
            reschedule_reason TEXT,
            contact_attempted JSONB,
            canceled_by VARCHAR(50),
            cancel_reason TEXT,
            kill_reason VARCHAR(100),
            completed_at TIMESTAMPTZ,
            completed_by_user_id UUID REFERENCES users(id) ON DELETE SET NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_meetings_pipeline ON activation_meetings(pipeline_id)')
    op.execute('CREATE INDEX idx_meetings_activator_start ON activation_meetings(activator_user_id, scheduled_start_at)')
    op.execute('CREATE INDEX idx_meetings_org_status ON activation_meetings(organization_id, status)')

    op.execute('''
        CREATE TABLE activation_events (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            pipeline_id UUID NOT NULL REFERENCES activation_pipelines(id) ON DELETE CASCADE,
            meeting_id UUID REFERENCES activation_meetings(id) ON DELETE SET NULL,
            event_type VARCHAR(50) NOT NULL,
            actor_user_id UUID REFERENCES users(id) ON DELETE SET NULL,
            metadata_json JSONB,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_activation_events_pipeline ON activation_events(pipeline_id, created_at)')

    # ==========================================================================
    # Product lifecycle
    # ==========================================================================
    op.execute('''
        CREATE TABLE client_links (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            external_user_id VARCHAR(255) UNIQUE NOT NULL,
            crm_lead_id UUID NOT NULL REFERENCES leads(id) ON DELETE CASCADE,
            sdr_user_id UUID REFERENCES users(id) ON DELETE SET NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    op.execute('''
        CREATE TABLE client_events (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id VARCHAR(255) NOT NULL,
            event_type VARCHAR(50) NOT NULL,
            payload JSONB,
            processed BOOLEAN NOT NULL DEFAULT false,
            processed_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_client_events_unprocessed ON client_events(processed, created_at)')
    op.execute('CREATE INDEX idx_client_events_user ON client_events(user_id)')

    # ==========================================================================
    # Payouts and performance signals
    # ==========================================================================
    op.execute('''
        CREATE TABLE bonus_events (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            campaign_id UUID NOT NULL REFERENCES campaigns(id) ON DELETE CASCADE,
            team_member_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            event_type VARCHAR(50) NOT NULL,
            external_user_id VARCHAR(255) NOT NULL,
            bonus_amount_usd NUMERIC(10, 2) NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_bonus_events_natural_key
                UNIQUE (campaign_id, team_member_id, event_type, external_user_id)
        )
    ''')

    op.execute('''
        CREATE TABLE activation_credits (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            lead_id UUID UNIQUE NOT NULL REFERENCES leads(id) ON DELETE CASCADE,
            pipeline_id UUID NOT NULL REFERENCES activation_pipelines(id) ON DELETE CASCADE,
            activator_user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            sdr_user_id UUID REFERENCES users(id) ON DELETE SET NULL,
            trial_started_at TIMESTAMPTZ NOT NULL,
            converted_at TIMESTAMPTZ NOT NULL,
            days_to_convert INTEGER NOT NULL,
            amount NUMERIC(10, 2) NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    op.execute('''
        CREATE TABLE performance_events (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            campaign_id UUID NOT NULL REFERENCES campaigns(id) ON DELETE CASCADE,
            event_type VARCHAR(50) NOT NULL,
            lead_id UUID REFERENCES leads(id) ON DELETE SET NULL,
            user_id UUID REFERENCES users(id) ON DELETE SET NULL,
            metadata_json JSONB,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_performance_events_campaign ON performance_events(campaign_id, event_type)')


def downgrade() -> None:
    """Drop activation tables."""
    for table in (
        'performance_events',
        'activation_credits',
        'bonus_events',
        'client_events',
        'client_links',
        'activation_events',
        'activation_meetings',
        'availability_shifts',
        'activation_pipelines',
        'leads',
        'campaigns',
        'users',
        'organizations',
    ):
        op.execute(f'DROP TABLE IF EXISTS {table} CASCADE')
