"""Forms for posting updates."""

from django import forms


class UpdateForm(forms.Form):
    """Text of a new update."""

    text = forms.CharField(
        max_length=1000,
        strip=True,
        widget=forms.Textarea(attrs={"cols": 60, "rows": 3}),
    )
