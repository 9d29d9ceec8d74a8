"""
SQL-backed point store
Persists shared routes and their timestamped points through Flask-SQLAlchemy.
Database failures surface as StoreUnavailable; retrying is left to the caller.
"""

import logging
from contextlib import contextmanager
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from commuteflow.intelligence.engine import Route
from commuteflow.intelligence.errors import StoreUnavailable
from commuteflow.intelligence.geo import TimestampedPoint
from commuteflow.models import SharedRoute, TrackPoint


logger = logging.getLogger(__name__)


class SqlPointStore:
    def __init__(self, db):
        self.db = db

    @contextmanager
    def _session(self, action: str):
        try:
            yield self.db.session
        except SQLAlchemyError as e:
            self.db.session.rollback()
            logger.exception("Point store failed to %s", action)
            raise StoreUnavailable(f"Point store failed to {action}: {e}") from e

    def insert(self, point: TimestampedPoint):
        self.insert_many([point])

    def insert_many(self, points: List[TimestampedPoint]):
        with self._session("insert points") as session:
            next_seq = {}
            for point in points:
                if point.route_id not in next_seq:
                    next_seq[point.route_id] = session.query(TrackPoint).filter_by(route_id=point.route_id).count()
                session.add(TrackPoint.from_point(point, next_seq[point.route_id]))
                next_seq[point.route_id] += 1
            session.commit()

    def save_route(self, route: Route, points: List[TimestampedPoint]):
        with self._session("save route") as session:
            session.add(SharedRoute.from_route(route))
            for seq, point in enumerate(points):
                session.add(TrackPoint.from_point(point, seq))
            session.commit()

    def replace_route(self, route: Route, points: List[TimestampedPoint]):
        with self._session("replace route") as session:
            record = session.get(SharedRoute, route.id)
            if record is not None:
                session.delete(record)
                # old rows must be gone before the same primary key is added back
                session.flush()
            session.add(SharedRoute.from_route(route))
            for seq, point in enumerate(points):
                session.add(TrackPoint.from_point(point, seq))
            session.commit()

    def get_route(self, route_id: str) -> Optional[Route]:
        with self._session("load route") as session:
            record = session.get(SharedRoute, route_id)
            return record.to_route() if record else None

    def list_routes(self) -> List[Route]:
        with self._session("list routes") as session:
            records = session.query(SharedRoute).order_by(SharedRoute.departure_time).all()
            return [r.to_route() for r in records]

    def delete_route(self, route_id: str) -> bool:
        with self._session("delete route") as session:
            record = session.get(SharedRoute, route_id)
            if not record:
                return False
            session.delete(record)
            session.commit()
            return True

    def load_all(self) -> List[TimestampedPoint]:
        with self._session("load points") as session:
            rows = session.query(TrackPoint).order_by(TrackPoint.id).all()
            return [row.to_point() for row in rows]
