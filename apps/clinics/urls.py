"""
Clinic API URLs.
"""
from django.urls import path

from apps.clinics.views import ClinicListView

app_name = 'clinics'

urlpatterns = [
    path('', ClinicListView.as_view(), name='clinic-list'),
]
