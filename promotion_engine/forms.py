"""
Request forms for the JSON API.

Flask-WTF reads JSON bodies into form data, so these validate the flat
parts of each payload. Lists of student decisions are parsed by the
promotion service. CSRF is off: the API is called by the school app's
backend, not by a browser form.
"""

from flask_wtf import FlaskForm
from wtforms import StringField, IntegerField, FloatField, BooleanField
from wtforms.validators import DataRequired, Length, NumberRange, Optional, ValidationError


class ApiForm(FlaskForm):
    class Meta:
        csrf = False


class SessionForm(ApiForm):
    schoolId = StringField('School', validators=[DataRequired(), Length(max=64)])
    year = StringField('Year', validators=[DataRequired(), Length(max=20)])
    startDate = StringField('Start Date', validators=[Optional()])
    endDate = StringField('End Date', validators=[Optional()])


class ActivateSessionForm(ApiForm):
    schoolId = StringField('School', validators=[DataRequired(), Length(max=64)])
    isActive = BooleanField('Active')
    expectedVersion = IntegerField('Expected Version', validators=[Optional(), NumberRange(min=0)])

    def validate_isActive(self, field):
        # Deactivation happens only by activating another session
        if not field.data:
            raise ValidationError('Only isActive: true is supported.')


class TransitionBatchForm(ApiForm):
    schoolId = StringField('School', validators=[DataRequired(), Length(max=64)])
    fromSessionId = IntegerField('From Session', validators=[DataRequired()])
    toSessionId = IntegerField('To Session', validators=[DataRequired()])
    timeout = FloatField('Timeout (seconds)', validators=[Optional()])


class RevokeDropForm(ApiForm):
    schoolId = StringField('School', validators=[DataRequired(), Length(max=64)])
