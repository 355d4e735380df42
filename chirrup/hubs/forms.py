"""Forms for following feeds."""

from django import forms


class FollowForm(forms.Form):
    """URL of a feed to follow or stop following."""

    url = forms.URLField(
        max_length=4000,
        assume_scheme="https",
    )
