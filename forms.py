from flask_wtf import FlaskForm
from wtforms import StringField, BooleanField
from wtforms.validators import InputRequired, Length, Optional


def as_text(value):
    """JSON payloads may carry numbers, form fields expect text"""
    if value is None:
        return None
    return str(value).strip()


# PIN Form
class PinForm(FlaskForm):
    pin = StringField('PIN', filters=[as_text], validators=[InputRequired(), Length(max=20)])


# Admin settings form, every field is optional for partial updates
class SettingsForm(FlaskForm):
    pin = StringField('PIN', filters=[as_text], validators=[Optional(), Length(max=20)])
    school_name = StringField('School name', filters=[as_text], validators=[Optional(), Length(max=120)])
    logo_url = StringField('Logo URL', filters=[as_text], validators=[Optional(), Length(max=500)])
    theme = StringField('Theme', filters=[as_text], validators=[Optional(), Length(max=40)])
    dark_mode = BooleanField('Dark mode')
    pathway_label = StringField('Pathway label', filters=[as_text], validators=[Optional(), Length(max=40)])
