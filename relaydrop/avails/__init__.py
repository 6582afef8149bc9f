from relaydrop.avails import constants as const, useables as use
from relaydrop.avails.exceptions import *
from relaydrop.avails.wire import *
