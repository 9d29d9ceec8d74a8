from datetime import datetime, timezone

from flask_wtf import FlaskForm
from wtforms import Field, FloatField, StringField
from wtforms.validators import DataRequired, Length, NumberRange, Optional, StopValidation

from commuteflow.intelligence.errors import InvalidCoordinate, InvalidRoute
from commuteflow.intelligence.geo import validate_coordinate


MAX_RADIUS_M = 100_000
MAX_WINDOW_MINUTES = 24 * 60


def parse_timestamp(value) -> int:
    """Epoch milliseconds from an int/float or an ISO 8601 string (datetime-local included)."""
    if isinstance(value, bool):
        raise ValueError("Invalid time value")
    if isinstance(value, (int, float)):
        return int(value)

    text = str(value).strip()
    if not text:
        raise ValueError("Time is required")
    if text.lstrip('-').isdigit():
        return int(text)

    try:
        parsed = datetime.fromisoformat(text.replace('Z', '+00:00'))
    except ValueError:
        raise ValueError(f"Invalid time value: {text}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def parse_points(raw):
    if not isinstance(raw, list):
        raise InvalidRoute("points must be a list of {lat, lng} objects")

    points = []
    for item in raw:
        if isinstance(item, dict):
            lat = item.get('lat')
            lng = item.get('lng', item.get('lon'))
        elif isinstance(item, (list, tuple)) and len(item) == 2:
            lat, lng = item
        else:
            raise InvalidCoordinate(item, None, "expected {lat, lng}")
        points.append(validate_coordinate(lat, lng))
    return points


class Required:
    """Like InputRequired, but numeric zero from a JSON body counts as input."""
    field_flags = {"required": True}

    def __call__(self, form, field):
        if not field.raw_data or field.raw_data[0] is None or field.raw_data[0] == "":
            field.errors[:] = []
            raise StopValidation("This field is required.")


class TimestampField(Field):
    def _value(self):
        return str(self.data) if self.data is not None else ''

    def process_formdata(self, valuelist):
        if not valuelist:
            return
        self.data = None
        self.data = parse_timestamp(valuelist[0])


class GeocodeForm(FlaskForm):
    query = StringField('Location', validators=[DataRequired(), Length(max=255)])


class RoutePreviewForm(FlaskForm):
    source = StringField('Source', validators=[DataRequired(), Length(max=255)])
    destination = StringField('Destination', validators=[DataRequired(), Length(max=255)])


class ShareRouteForm(FlaskForm):
    username = StringField('Username', validators=[DataRequired(), Length(min=1, max=80)])
    departure_time = TimestampField('Departure Time', validators=[Required()])
    source = StringField('Source', validators=[Optional(), Length(max=255)])
    destination = StringField('Destination', validators=[Optional(), Length(max=255)])
    speed_kmh = FloatField('Speed (km/h)', validators=[Optional(), NumberRange(min=1, max=300)])


class CheckPointForm(FlaskForm):
    lat = FloatField('Latitude', validators=[Required()])
    lng = FloatField('Longitude', validators=[Required()])
    check_time = TimestampField('Check Time', validators=[Required()])
    username = StringField('Username', validators=[Optional(), Length(max=80)])
    radius_m = FloatField('Search Radius (m)', validators=[Optional(), NumberRange(min=0, max=MAX_RADIUS_M)])
    window_minutes = FloatField('Time Window (min)', validators=[Optional(), NumberRange(min=0, max=MAX_WINDOW_MINUTES)])


class HeatmapPreviewForm(FlaskForm):
    departure_time = TimestampField('Departure Time', validators=[Required()])
    username = StringField('Username', validators=[Optional(), Length(max=80)])
    speed_kmh = FloatField('Speed (km/h)', validators=[Optional(), NumberRange(min=1, max=300)])
