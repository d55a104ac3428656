from environs import Env
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

env = Env()
env.read_env(BASE_DIR / '.env')

APP_ENV = env.str('APP_ENV', 'local')

SECRET_KEY = env.str('APP_SECRET_KEY', 'change-me')

DEBUG = APP_ENV != 'production'

ALLOWED_HOSTS = env.list('ALLOWED_HOSTS', default=['*'])

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'rest_framework',
    'aptfy',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'core.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.debug',
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'core.wsgi.application'


DATABASES = {
    'default': {
        'ENGINE': env.str('DATABASE_ENGINE', 'django.db.backends.postgresql_psycopg2'),
        'NAME': env.str(
            'PGSQL_DATABASE_APTFY',
            env.str('PGSQL_DATABASE', 'aptfy'),
        ),
        'USER': env.str('PGSQL_USER', 'postgres'),
        'PASSWORD': env.str('PGSQL_PASSWORD', 'mysecretpassword'),
        'HOST': env.str('PGSQL_HOST', 'localhost'),
        'PORT': env.int('PGSQL_PORT', 5432),
    }
}


AUTH_PASSWORD_VALIDATORS = [
    {
        'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.NumericPasswordValidator',
    },
]


LANGUAGE_CODE = 'en-us'

TIME_ZONE = 'UTC'

USE_I18N = True

USE_TZ = True


STATIC_URL = '/static/'
STATIC_ROOT = BASE_DIR / 'static'

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

REST_FRAMEWORK = {
    'DEFAULT_RENDERER_CLASSES': [
        'rest_framework.renderers.JSONRenderer',
    ],
}

SESSION_COOKIE_AGE = env.int('SESSION_COOKIE_AGE', 60 * 60 * 24 * 30)

APTFY_APP_URL = env.str('APTFY_APP_URL', 'http://localhost:3000')
APTFY_MAX_PAYMENT_AMOUNT = env.decimal('APTFY_MAX_PAYMENT_AMOUNT', '1000000')

APTFY_APTOS_NETWORK = env.str('APTFY_APTOS_NETWORK', 'testnet')
APTFY_APTOS_NODE_URL = env.str('APTFY_APTOS_NODE_URL', '')
APTFY_ESCROW_MODULE_ADDRESS = env.str('APTFY_ESCROW_MODULE_ADDRESS', '0xCAFE')
APTFY_USDC_METADATA_ADDRESS = env.str(
    'APTFY_USDC_METADATA_ADDRESS',
    '0x69091fbab5f7d635ee7ac5098cf0c1efbe31d68fec0f2cd565e8d168daf52832',
)

APTFY_GOOGLE_CLIENT_ID = env.str('APTFY_GOOGLE_CLIENT_ID', '')
APTFY_GOOGLE_REDIRECT_URI = env.str(
    'APTFY_GOOGLE_REDIRECT_URI', f'{APTFY_APP_URL}/auth/callback')

APTFY_KEYLESS_PEPPER_URL = env.str(
    'APTFY_KEYLESS_PEPPER_URL',
    'https://api.testnet.aptoslabs.com/keyless/pepper/v0/fetch',
)
APTFY_KEYLESS_PROVER_URL = env.str(
    'APTFY_KEYLESS_PROVER_URL',
    'https://api.testnet.aptoslabs.com/keyless/prover/v0/prove',
)
APTFY_KEYLESS_TIMEOUT_SECONDS = env.int('APTFY_KEYLESS_TIMEOUT_SECONDS', 30)
APTFY_KEYLESS_EXP_HORIZON_SECONDS = env.int(
    'APTFY_KEYLESS_EXP_HORIZON_SECONDS', 10_000_000)
APTFY_EPHEMERAL_KEY_TTL_SECONDS = env.int(
    'APTFY_EPHEMERAL_KEY_TTL_SECONDS', 60 * 60 * 24 * 30)
