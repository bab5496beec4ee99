# social_routes.py - Profiles, follows, activity feed and messages
from flask import Blueprint, jsonify
from flask_login import current_user, login_required

import social
from error_handling import json_body

profiles_bp = Blueprint('profiles', __name__, url_prefix='/api/profiles')
activity_bp = Blueprint('activity', __name__, url_prefix='/api/activity')
messages_bp = Blueprint('messages', __name__, url_prefix='/api/messages')


# Profiles and follows

@profiles_bp.route('/<username>', methods=['GET'])
def get_profile(username):
    return jsonify(social.get_profile(username))


@profiles_bp.route('/me', methods=['PUT'])
@login_required
def update_profile():
    profile = social.update_profile(current_user.id, json_body())
    return jsonify({"message": "Profile updated successfully", "profile": profile})


@profiles_bp.route('/follow/<int:user_id>', methods=['POST'])
@login_required
def follow(user_id):
    social.follow_user(current_user.id, user_id)
    return jsonify({"message": "User followed successfully"})


@profiles_bp.route('/follow/<int:user_id>', methods=['DELETE'])
@login_required
def unfollow(user_id):
    social.unfollow_user(current_user.id, user_id)
    return jsonify({"message": "User unfollowed successfully"})


@profiles_bp.route('/follow/check/<int:user_id>', methods=['GET'])
@login_required
def check_follow(user_id):
    return jsonify({"isFollowing": social.is_following(current_user.id, user_id)})


@profiles_bp.route('/<int:user_id>/followers', methods=['GET'])
def followers(user_id):
    return jsonify(social.list_followers(user_id))


@profiles_bp.route('/<int:user_id>/following', methods=['GET'])
def following(user_id):
    return jsonify(social.list_following(user_id))


# Activity feed

@activity_bp.route('', methods=['GET'])
@login_required
def feed():
    return jsonify(social.get_feed(current_user.id))


@activity_bp.route('/user/<int:user_id>', methods=['GET'])
def user_activity(user_id):
    return jsonify(social.get_user_activity(user_id))


@activity_bp.route('', methods=['POST'])
@login_required
def create_activity():
    activity = social.create_activity(current_user.id, json_body())
    return jsonify({"message": "Activity created successfully", "activity": activity}), 201


# Messages

@messages_bp.route('/conversations', methods=['GET'])
@login_required
def conversations():
    return jsonify(social.list_conversations(current_user.id))


@messages_bp.route('/conversation/<int:user_id>', methods=['GET'])
@login_required
def conversation(user_id):
    return jsonify(social.get_conversation(current_user.id, user_id))


@messages_bp.route('/send', methods=['POST'])
@login_required
def send_message():
    message = social.send_message(current_user.id, json_body())
    return jsonify({"message": "Message sent successfully", "data": message}), 201


@messages_bp.route('/unread-count', methods=['GET'])
@login_required
def unread_count():
    return jsonify({"count": social.unread_count(current_user.id)})


@messages_bp.route('/<int:message_id>/read', methods=['PUT'])
@login_required
def mark_read(message_id):
    social.mark_read(message_id, current_user.id)
    return jsonify({"message": "Message marked as read"})


@messages_bp.route('/<int:message_id>', methods=['DELETE'])
@login_required
def delete_message(message_id):
    social.delete_message(message_id, current_user.id)
    return jsonify({"message": "Message deleted successfully"})
