"""Setup script for the avatar relay package."""

from setuptools import setup, find_packages

package_name = 'avatar_relay'


setup(
    name=package_name,
    version='0.1.0',
    packages=find_packages(exclude=['test']),
    package_data={
        'avatar_relay.config': ['*.yaml'],
    },
    install_requires=[
        'setuptools',
        'aiohttp>=3.8.0',
        'aiortc>=1.6.0',
        'pyyaml>=6.0',
        'numpy>=1.21.0',
        'psutil>=5.9.0',
    ],
    extras_require={
        'tracking': [
            'mediapipe>=0.10.0',
            'opencv-python>=4.8.0',
        ],
        'dev': [
            'pytest>=7.0.0',
            'pytest-asyncio>=0.20.0',
            'pytest-cov>=4.0.0',
            'black>=23.0.0',
            'isort>=5.12.0',
            'mypy>=1.0.0',
            'flake8>=6.0.0',
        ],
    },
    zip_safe=False,
    description='Avatar relay - live face retargeting with WebRTC signaling to a host application',
    license='MIT',
    tests_require=['pytest'],
    entry_points={
        'console_scripts': [
            'avatar_relay = avatar_relay.server:main',
        ],
    },
    python_requires='>=3.10',
)
