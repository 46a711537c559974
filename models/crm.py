from extensions import db
from datetime import datetime
import uuid


class LeadStatus:
    ACTIVE = 'ACTIVE'
    PAUSED = 'PAUSED'
    UNSUBSCRIBED = 'UNSUBSCRIBED'
    BOUNCED = 'BOUNCED'
    REPLIED = 'REPLIED'
    CONVERTED = 'CONVERTED'

    # Leads in these states must never receive pipeline mail
    DO_NOT_CONTACT = (UNSUBSCRIBED, BOUNCED)


class Lead(db.Model):
    __tablename__ = 'leads'
    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    company_id = db.Column(db.String(36), db.ForeignKey('companies.id'), nullable=False, index=True)
    email = db.Column(db.String(255), nullable=False)
    first_name = db.Column(db.String(100))
    last_name = db.Column(db.String(100))
    title = db.Column(db.String(150))
    company_name = db.Column(db.String(255))
    status = db.Column(db.String(20), default=LeadStatus.ACTIVE, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    activities = db.relationship('LeadActivity', backref='lead', cascade="all, delete-orphan", order_by='LeadActivity.timestamp')


class ActivityType:
    EMAIL_SENT = 'EMAIL_SENT'
    PIPELINE_STARTED = 'PIPELINE_STARTED'
    PIPELINE_COMPLETED = 'PIPELINE_COMPLETED'
    PIPELINE_FAILED = 'PIPELINE_FAILED'
    PIPELINE_CANCELLED = 'PIPELINE_CANCELLED'


class LeadActivity(db.Model):
    __tablename__ = 'lead_activities'
    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    lead_id = db.Column(db.String(36), db.ForeignKey('leads.id'), nullable=False, index=True)
    activity_type = db.Column(db.String(50), nullable=False)
    description = db.Column(db.Text, nullable=False)
    # "metadata" is reserved on declarative models
    details = db.Column('metadata', db.JSON)
    timestamp = db.Column(db.DateTime, default=datetime.utcnow)
