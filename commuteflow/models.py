from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.orm import DeclarativeBase
from datetime import datetime
import json

from commuteflow.intelligence.engine import Route
from commuteflow.intelligence.geo import GeoPoint, TimestampedPoint


class Base(DeclarativeBase):
    pass


db = SQLAlchemy(model_class=Base)


class SharedRoute(db.Model):
    __tablename__ = 'routes'

    id = db.Column(db.String(36), primary_key=True)
    username = db.Column(db.String(80), nullable=False, index=True)
    departure_time = db.Column(db.BigInteger, nullable=False)
    source_label = db.Column(db.String(255), default='')
    destination_label = db.Column(db.String(255), default='')
    waypoints_json = db.Column(db.Text, nullable=False, default='[]')
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    points = db.relationship(
        'TrackPoint', backref='route', lazy=True,
        cascade='all, delete-orphan', order_by='TrackPoint.seq'
    )

    @classmethod
    def from_route(cls, route: Route) -> 'SharedRoute':
        return cls(
            id=route.id,
            username=route.user_id,
            departure_time=route.departure_time,
            source_label=route.source_label or '',
            destination_label=route.destination_label or '',
            waypoints_json=json.dumps([[p.lat, p.lng] for p in route.waypoints])
        )

    def to_route(self) -> Route:
        waypoints = [GeoPoint(lat, lng) for lat, lng in json.loads(self.waypoints_json or '[]')]
        return Route(
            id=self.id,
            user_id=self.username,
            departure_time=self.departure_time,
            waypoints=waypoints,
            source_label=self.source_label or '',
            destination_label=self.destination_label or ''
        )

    def __repr__(self):
        return f'<SharedRoute {self.id} by {self.username}>'


class TrackPoint(db.Model):
    __tablename__ = 'track_points'

    id = db.Column(db.Integer, primary_key=True)
    route_id = db.Column(db.String(36), db.ForeignKey('routes.id', ondelete='CASCADE'), nullable=False, index=True)
    seq = db.Column(db.Integer, nullable=False)
    lat = db.Column(db.Float, nullable=False)
    lng = db.Column(db.Float, nullable=False)
    timestamp = db.Column(db.BigInteger, nullable=False, index=True)
    username = db.Column(db.String(80), nullable=False, index=True)

    @classmethod
    def from_point(cls, point: TimestampedPoint, seq: int) -> 'TrackPoint':
        return cls(
            route_id=point.route_id,
            seq=seq,
            lat=point.lat,
            lng=point.lng,
            timestamp=point.timestamp,
            username=point.user_id
        )

    def to_point(self) -> TimestampedPoint:
        return TimestampedPoint(
            lat=self.lat,
            lng=self.lng,
            timestamp=self.timestamp,
            user_id=self.username,
            route_id=self.route_id
        )

    def __repr__(self):
        return f'<TrackPoint {self.route_id}#{self.seq}>'
