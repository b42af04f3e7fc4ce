from datetime import datetime
from repokeeper import db


class Repository(db.Model):
    """Remote repository to mirror"""
    __tablename__ = 'repositories'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    hoster = db.Column(db.String(255), nullable=False, default='')
    owner = db.Column(db.String(255), nullable=False, default='')
    url = db.Column(db.String(1000), nullable=False, default='')
    ssh_url = db.Column(db.String(1000), nullable=False, default='')
    use_ssh = db.Column(db.Boolean, default=False, nullable=False)
    ssh_key_path = db.Column(db.String(1000))
    username = db.Column(db.String(255))
    token_encrypted = db.Column(db.Text)  # Encrypted access token
    password_encrypted = db.Column(db.Text)  # Encrypted basic auth password
    enabled = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint('hoster', 'owner', 'name', name='uq_repository_identity'),
    )

    # Relationship
    history = db.relationship('SyncHistory', back_populates='repository', cascade='all, delete-orphan', lazy='dynamic')

    def __repr__(self):
        return f'<Repository {self.hoster}/{self.owner}/{self.name} ssh={self.use_ssh} enabled={self.enabled}>'


class Destination(db.Model):
    """Local directory that repositories are mirrored into"""
    __tablename__ = 'destinations'

    id = db.Column(db.Integer, primary_key=True)
    path = db.Column(db.String(1000), unique=True, nullable=False)
    structured = db.Column(db.Boolean, default=False, nullable=False)
    bare = db.Column(db.Boolean, default=False, nullable=False)
    keep = db.Column(db.Integer, default=0, nullable=False)  # 0 = no snapshots
    compression = db.Column(db.String(20), default='', nullable=False)  # '', none, zip, zstd
    enabled = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationship
    history = db.relationship('SyncHistory', back_populates='destination', cascade='all, delete-orphan', lazy='dynamic')

    def __repr__(self):
        return f'<Destination {self.path} keep={self.keep} compression={self.compression or "none"}>'


class SyncHistory(db.Model):
    """Result of mirroring one repository into one destination"""
    __tablename__ = 'sync_history'

    id = db.Column(db.Integer, primary_key=True)
    repository_id = db.Column(db.Integer, db.ForeignKey('repositories.id'), nullable=False)
    destination_id = db.Column(db.Integer, db.ForeignKey('destinations.id'), nullable=False)
    status = db.Column(db.String(20), nullable=False)  # running, success, skipped, not_found, failed
    dry_run = db.Column(db.Boolean, default=False, nullable=False)
    started_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    completed_at = db.Column(db.DateTime)
    target_path = db.Column(db.String(1000))
    archive_path = db.Column(db.String(1000))
    attempts = db.Column(db.Integer, default=0, nullable=False)
    error_message = db.Column(db.Text)
    logs = db.Column(db.Text)

    # Relationships
    repository = db.relationship('Repository', back_populates='history')
    destination = db.relationship('Destination', back_populates='history')

    def __repr__(self):
        return f'<SyncHistory repository_id={self.repository_id} destination_id={self.destination_id} status={self.status}>'
