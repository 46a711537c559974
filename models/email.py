from extensions import db
from datetime import datetime
import uuid


class EmailTemplate(db.Model):
    __tablename__ = 'email_templates'
    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    company_id = db.Column(db.String(36), db.ForeignKey('companies.id'), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    subject = db.Column(db.String(255), nullable=False)
    content = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class EmailStatus:
    SENT = 'SENT'
    FAILED = 'FAILED'


class Email(db.Model):
    """One delivery attempt made on behalf of a pipeline step."""
    __tablename__ = 'emails'
    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    lead_id = db.Column(db.String(36), db.ForeignKey('leads.id'), nullable=False, index=True)
    template_id = db.Column(db.String(36), db.ForeignKey('email_templates.id'))
    step_execution_id = db.Column(db.String(36), index=True)
    subject = db.Column(db.String(255), nullable=False)
    content = db.Column(db.Text, nullable=False)
    status = db.Column(db.String(20), nullable=False)
    message_id = db.Column(db.String(255))
    error = db.Column(db.Text)
    sent_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
